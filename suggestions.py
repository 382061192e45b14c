SUGGESTIONS = [
    "Make it a starry night with a full moon",
    "Add a retro cyberpunk filter",
    "Turn it into a pencil sketch",
    "Add fireworks in the background",
]

PROMPT_PLACEHOLDER = "Describe your edit... (e.g. 'Add a neon sign that says Hello')"

GENERIC_FAILURE = "Failed to generate image. Please try again."

READ_FAILURE = "Could not read the image file. Please try again."
