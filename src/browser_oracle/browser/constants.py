"""Selectors and markers for the ChatGPT composer."""

from __future__ import annotations

PROMPT_SELECTORS = (
    "#prompt-textarea",
    'div.ProseMirror[contenteditable="true"]',
    'textarea[data-testid="prompt-textarea"]',
    'textarea[name="prompt-textarea"]',
)

SEND_BUTTON_SELECTOR = 'button[data-testid="send-button"]'
STOP_BUTTON_SELECTOR = 'button[data-testid="stop-button"]'

FILE_INPUT_SELECTOR = 'form input[type="file"]:not([accept="image/*"])'
GENERIC_FILE_INPUT_SELECTOR = 'input[type="file"]'
FILE_INPUT_SELECTORS = (FILE_INPUT_SELECTOR, GENERIC_FILE_INPUT_SELECTOR)

UPLOAD_STATUS_SELECTORS = (
    '[data-testid*="upload"]',
    '[data-testid*="attachment"]',
    '[aria-live="polite"]',
    '[role="status"]',
)

COMPOSER_SCOPE_SELECTORS = (
    'form[data-type="unified-composer"]',
    "form:has(#prompt-textarea)",
    "form",
)

ATTACHMENT_INDICATOR_SELECTORS = (
    '[data-testid*="attachment-pill"]',
    '[data-testid*="file-tile"]',
    '[data-testid*="attachment"]',
    'div[role="group"][aria-label]',
    "[data-filename]",
)

CONVERSATION_TURN_SELECTOR = '[data-testid^="conversation-turn"], article'
ASSISTANT_ROLE_SELECTOR = '[data-message-author-role="assistant"]'

THINKING_STATUS_SELECTORS = (
    "span.loading-shimmer",
    "span.flex.items-center.gap-1.truncate.text-start.align-middle.text-token-text-tertiary",
    '[data-testid*="thinking"]',
    '[data-testid*="reasoning"]',
    '[role="status"]',
    '[aria-live="polite"]',
)

THINKING_KEYWORDS = (
    "pro thinking",
    "thinking",
    "reasoning",
    "clarifying",
    "planning",
    "drafting",
    "summarizing",
)

CONVERSATION_ROUTE_PREFIXES = ("c", "g")

COMPOSER_READY_SELECTORS = (
    SEND_BUTTON_SELECTOR,
    'button[data-testid="composer-speech-button"]',
)
BUSY_BUTTON_SELECTORS = (STOP_BUTTON_SELECTOR,)
BUSY_STATUS_KEYWORDS = ("upload", "processing")
