ENHANCE_PROMPT = """\
You are a world-class creative director. Your task is to analyze the user's input \
(which can be text, an image, or both) and create a single, clear, highly detailed, \
and vivid prompt for an advanced AI image generation model. The prompt should be a \
descriptive paragraph, focusing on visual details like subject, style, lighting, \
composition, and color palette. Output only the prompt itself, without any extra \
conversation or explanation."""

VALIDATION_MESSAGE = "Please enter a prompt or upload an image."

ANALYZING_STATUS = "Analyzing your idea..."
ANALYZING_MESSAGE = "Thinking... Gemini is analyzing your idea."

GENERATING_STATUS = "Generating..."
GENERATING_MESSAGE = "Idea analyzed! Now generating images..."

NO_IMAGES_MESSAGE = (
    "No images were generated. This could be due to the safety policy. "
    "Try a different prompt."
)

ERROR_MESSAGE = "Error: Could not generate images. Check the console for details."
