# Style constants
STYLE_CYAN = "cyan"
STYLE_BRIGHT_CYAN = "bright_cyan"
STYLE_GREEN = "green"
STYLE_GREEN_BOLD = "green bold"
STYLE_RED = "red"
STYLE_BOLD_RED = "bold red"
STYLE_DIM = "dim"
STYLE_YELLOW_BOLD = "yellow bold"
STYLE_BLUE_BOLD = "blue bold"

# Node roles
STYLE_ACTIVE = STYLE_YELLOW_BOLD
STYLE_STANDBY = STYLE_GREEN_BOLD
STYLE_NOT_VOTING = STYLE_BOLD_RED

# Layout constants (Padding)
PADDING_STANDARD = (1, 1)
PADDING_NARROW = (0, 1)

# Switch step status labels
STEP_SUCCEEDED = "✓ Success"
STEP_FAILED = "✗ Failed"
STEP_PREVIEWED = "◌ Dry run"
STEP_PENDING = "⏳ Pending"

# Panel titles
APP_NAME = "THW-SwitchKit"
HEADER_TITLE_PLAN = "Validator Identity Switch"
HEADER_TITLE_SUMMARY = "Switch Summary"
