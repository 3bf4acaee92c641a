"""
utils/constants.py

Purpose: Centralized static content

- User-facing bot messages shared by both channels
- Command words, wake phrases and bot-authored prefixes
- Feature ids and capability names

(Prevents hardcoding across the codebase)
"""

# ============================================================
# CHANNELS & COMMANDS
# ============================================================

CHANNEL_WHATSAPP = "whatsapp"
CHANNEL_TELEGRAM = "telegram"

# Bot output starts with one of these; the WhatsApp adapter ignores its own echoes
BOT_AUTHORED_PREFIXES = ("BOT:", "🤖", "📋", "📝", "🤔", "✍️")

COMMAND_PREFIX = "!"
SLEEP_COMMANDS = ("exit", "bye", "close")
WAKE_PHRASE_CONTAINED = "hi sailsetu"
WAKE_PHRASE_EXACT = "hello sailsetu"
MENU_COMMANDS = ("!reset", "!menu", "!tools", "!textmenu")
TEXT_MENU_COMMAND = "!textmenu"
PING_COMMAND = "!ping"

TELEGRAM_MENU_COMMANDS = ("!menu", "!tools", "hi", "Hi", "/start")

AFFIRMATIVE_REPLIES = ("yes", "y")

# ============================================================
# FEATURES & CAPABILITIES
# ============================================================

FEATURE_VERIFY_IDENTITY = "verify-identity"
FEATURE_LEAVER_CLEANUP = "leaver-cleanup"
FEATURE_MANAGE_ACCESS = "manage-access"
FEATURE_ACCESS_REVIEW = "access-review"
FEATURE_SYSTEM_STATUS = "system-status"

# Features that may run without SailPoint credentials
CONFIG_FREE_FEATURES = (FEATURE_SYSTEM_STATUS,)

ANY_CAPABILITY = "*"
CAPABILITY_REVIEWER = "Reviewer"
CAPABILITY_ADMIN = "Admin"
CAPABILITY_USER = "User"

# ============================================================
# ENGINE MESSAGES
# ============================================================

MENU_POLL_QUESTION = "🤖 *SailSetu Tools Menu*\nSelect a tool to open:"

MENU_TEXT_TEMPLATE = "BOT: 🤖 *SailSetu Tools Menu*\nReply with a number:\n\n{items}"

MENU_LOADING_MESSAGE = "BOT: ⏳ Loading Menu..."

TELEGRAM_MENU_LOADING_MESSAGE = "BOT: ⏳ *Loading SailSetu Tools...*"

NO_FEATURES_MESSAGE = "BOT: ⚠️ No matching features found for your role."

NO_FEATURES_GUIDANCE_MESSAGE = (
    "BOT: ⚠️ No matching features found for your roles. "
    "Please ensure you have the correct `sailsetu-*` roles in SailPoint."
)

INVALID_SELECTION_MESSAGE = "BOT: ⚠️ Invalid selection. Please use the buttons or reply with a number."

INVALID_NUMERIC_SELECTION_MESSAGE = "❌ Invalid selection. Please reply with a number from the menu (e.g. '1')."

CONFIG_MISSING_MESSAGE = """BOT: ⚠️ *Configuration Missing!* 🚫
To secure the connection, I need to be authorized.

👉 Please visit the *SailSetu Dashboard* to wake me up!"""

FEATURE_NOT_FOUND_MESSAGE = "BOT: ⚠️ Error: Active feature not found. Resetting."

ERROR_MESSAGE_TEMPLATE = "BOT: ❌ Error: {error}"

STILL_WORKING_MESSAGE = "BOT: ⏳ Still working on it, SailPoint is taking a while..."

MENU_ERROR_MESSAGE = "BOT: ❌ Error loading menu. Please try again."

# ============================================================
# WHATSAPP MESSAGES
# ============================================================

WHATSAPP_WELCOME_MESSAGE = """BOT: 🚀 *SailSetu Connected!*

You are now the bot admin!
You can control the system by messaging *yourself* (Note to Self).

👇 *Try these commands:*
Type *!tools* to open the menu."""

SESSION_PAUSED_MESSAGE = """BOT: 🛌 *Session Paused*
I will stay quiet now.

Type *'Hi SailSetu'* to wake me up!"""

WAKE_MESSAGE = "BOT: 👋 *Hello! SailSetu is Online.*"

PONG_MESSAGE = "BOT: 🏓 Pong!"

# ============================================================
# TELEGRAM MESSAGES
# ============================================================

IDENTITY_RECOGNIZED_TEMPLATE = """BOT: ✅ *Identity Recognized!*

Welcome back, *{display_name}*.
Your roles have been synchronized from SailPoint."""

# ============================================================
# LIMITS
# ============================================================

POLL_MAX_OPTIONS = 10
POLL_LABEL_LENGTH = 20
BATCH_PROGRESS_EVERY = 5
BATCH_DETAILS_MAX_CHARS = 3000
BATCH_DETAILS_MAX_ROWS = 50
LEAVER_LIST_PREVIEW = 10
IDENTITY_ITEMS_PREVIEW = 15
