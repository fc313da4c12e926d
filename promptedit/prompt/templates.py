from __future__ import annotations

# Shown as one-click chips under the prompt box.
EXAMPLE_PROMPTS: tuple[str, ...] = (
    "Add a retro, vintage filter",
    "Make the image black and white",
    "Change the background to a sunny beach",
    "Give the main subject a superhero cape",
    "Remove the person in the background",
)

VALIDATION_MESSAGE = "Please upload an image and enter a prompt."
