# ─────────────────────────────────────────────────────────────────────────────
# Prompt Templates — scene-description instruction and style twists
# ─────────────────────────────────────────────────────────────────────────────


# Base instruction sent with every Street View still. The twist is appended
# after it so a directive can colour the description but never replace the
# positional-coverage requirement.
BASE_DESCRIPTION_PROMPT = (
    'You are a "detailed image describer." Your task is to analyze an image of a location'
    " and provide a very detailed description, including every part of the image and"
    " specifying the location of each element within the image (e.g., top left corner,"
    " center, bottom right, etc.). ignore any ui elements, be very descriptive, include"
    " things like which way we are facing, which way the roads are going and such,"
    " include detailed colours of important features and elements."
)

TWIST_PREFIX = (
    " the following is the twist, incorporate it into every part of the description in some way: "
)


# ── Predefined style twists ──────────────────────────────────────────────────
# key → (label, directive). Selected via the `style` request field.

STYLE_PRESETS: dict[str, tuple[str, str]] = {
    "future": (
        "Futuristic",
        "now, the twist: the scene is in the style of the future,"
        " incorporate futuristic elements into each part of the scene",
    ),
    "past": (
        "Historical",
        "now, the twist: the scene is in the style of the past,"
        " incorporate historical elements into each part of the scene",
    ),
    "post_apocalyptic": (
        "Post-Apocalyptic",
        "now, the twist: the scene is in the style of post-apocalyptic world,"
        " incorporate post-apocalyptic elements into each part of the scene",
    ),
    "fantasy": (
        "Fantasy",
        "now, the twist: the scene is in the style of fantasy world,"
        " incorporate fantasy elements into each part of the scene",
    ),
    "cyberpunk": (
        "Cyberpunk",
        "now, the twist: the scene is in the style of cyberpunk,"
        " incorporate cyberpunk elements into each part of the scene",
    ),
    "steampunk": (
        "Steampunk",
        "now, the twist: the scene is in the style of steampunk,"
        " incorporate steampunk elements into each part of the scene",
    ),
}


def compose_style_directive(style: str | None, custom: str | None) -> str | None:
    """Combine a preset style key and free-form additions into one directive.

    The preset comes first, joined to the custom text with ". ". Unknown or
    "none" style keys contribute nothing.

    Args:
        style: Key into STYLE_PRESETS, or None.
        custom: Caller-supplied text, or None.

    Returns:
        The combined directive, or None when both inputs are empty.
    """
    pieces: list[str] = []
    if style and style in STYLE_PRESETS:
        pieces.append(STYLE_PRESETS[style][1])
    if custom and custom.strip():
        pieces.append(custom.strip())
    return ". ".join(pieces) or None


def build_description_prompt(style_directive: str | None = None) -> str:
    """Return the base instruction with the style twist appended, if any.

    Examples:
        build_description_prompt() → BASE_DESCRIPTION_PROMPT
        build_description_prompt("cyberpunk") →
            BASE_DESCRIPTION_PROMPT + TWIST_PREFIX + "cyberpunk"
    """
    prompt = BASE_DESCRIPTION_PROMPT
    if style_directive and style_directive.strip():
        prompt += TWIST_PREFIX + style_directive.strip()
    return prompt
