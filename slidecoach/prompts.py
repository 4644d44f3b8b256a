from dataclasses import dataclass
from typing import Optional, Sequence

from .models import GenerationMode, GenerationRequest

# =========================
# Slide generation
# =========================
IMAGE_STYLE = "pop art"

SLIDE_FORMAT_RULES = (
    "Format your response as a JSON array of slide objects. "
    "Each slide object must have exactly these properties, all non-empty strings: "
    "'title', 'content', and 'image_prompt' (a detailed and creative prompt suitable for an image "
    f"generation model that visually represents the slide's content in a {IMAGE_STYLE} style). "
    "The 'content' field must be a single string of human-readable text, formatted with bullet points "
    "(e.g. '• Point 1\\n• Point 2') or numbered lists where appropriate. "
    "The 'content' field itself must NOT be a JSON string or a JSON array of strings. "
    "If a top-level JSON object is required, wrap the array as {\"slides\": [...]}. "
    "IMPORTANT: Return ONLY the JSON without any markdown formatting, explanation, or code blocks."
)

SYSTEM_PROMPTS = {
    GenerationMode.TOPIC: (
        "You are an expert presentation designer. Create a complete presentation with 5 slides "
        "(including a cover slide) on the given topic. Use an energetic and bold tone. "
        + SLIDE_FORMAT_RULES
    ),
    GenerationMode.BULLETS: (
        "You are an expert presentation designer. Expand the given bullet points into a complete "
        "presentation. Use an energetic and bold tone. " + SLIDE_FORMAT_RULES
    ),
    GenerationMode.CONTENT: (
        "You are an expert presentation designer. Format the given content into well-designed slides. "
        "Use an energetic and bold tone. " + SLIDE_FORMAT_RULES
    ),
    GenerationMode.SUMMARY: (
        "You are an expert presentation designer. Your task is to summarize the provided text, which may "
        "have been extracted from a website, into a concise and informative presentation.\n"
        "Focus ONLY on the core products, services, key features, or main informational content.\n"
        "AVOID creating slides from generic website sections such as navigation menus, headers, footers, "
        "sidebars, 'Contact Us' pages, social media links, or general marketing statements unless they are "
        "central to the main subject matter.\n"
        "Disregard any text that analyses the website's own structure, SEO, or technical implementation.\n"
        "The presentation must be factual and directly based on the provided text. Do not add information "
        "that is not present in the text.\n" + SLIDE_FORMAT_RULES
    ),
}

USER_PROMPT_TMPL = {
    GenerationMode.TOPIC: (
        'Create a 5-slide presentation on the topic: "{text}". '
        "The first slide should be a cover slide with a catchy title."
    ),
    GenerationMode.BULLETS: "Expand these bullet points into a complete presentation:\n\n{text}",
    GenerationMode.CONTENT: "Format this content into well-designed slides:\n\n{text}",
    GenerationMode.SUMMARY: "Based on the system instructions, create a presentation from the following text:\n\n{text}",
}


@dataclass(frozen=True)
class PromptPair:
    system: str
    user: str


def system_prompt_for(mode: GenerationMode) -> str:
    return SYSTEM_PROMPTS[GenerationMode(mode)]


def build_generation_prompts(request: GenerationRequest, text: str) -> PromptPair:
    """Compose the system/user prompts; the template is chosen by ``request.mode`` alone."""
    mode = GenerationMode(request.mode)
    user = USER_PROMPT_TMPL[mode].format(text=text)

    context = []
    if request.title:
        context.append(f"Presentation title: {request.title}")
    if request.audience:
        context.append(f"Target audience: {request.audience}")
    if request.goal:
        context.append(f"Presentation goal: {request.goal}")
    if context:
        user += "\n\n" + "\n".join(context)
    return PromptPair(system=system_prompt_for(mode), user=user)


# =========================
# Clarity judgment
# =========================
CLARITY_SYSTEM_PROMPT = (
    "You are an expert presentation evaluator. Given the following slide contents and a transcript of a "
    "spoken presentation, analyze the delivery for CLARITY ONLY:\n"
    "- Did the speaker cover the key terms from the slides, and were they pronounced clearly?\n"
    "- Return a JSON object with:\n"
    '  - "score": (0-100, higher is better for clarity)\n'
    '  - "feedback": (a short, actionable sentence regarding clarity)\n'
    '  - "improvements": (an array of 1-2 short, actionable improvement suggestions related to clarity, '
    'e.g., "Enunciate technical terms more clearly.")\n'
    "IMPORTANT: Respond ONLY with the JSON object. Do not include any other text or markdown formatting."
)


def build_clarity_user_prompt(transcript: str, slide_texts: Sequence[str]) -> str:
    slides = "\n---\n".join(slide_texts)
    return f"Slide Contents:\n{slides}\n\nTranscript:\n{transcript}"


# =========================
# Interactive practice
# =========================
OPENING_TURN_USER_PROMPT = "Based on the slide content, please ask me an initial question."


def interactive_system_prompt(slide_content: str, slide_title: Optional[str], user_response: Optional[str]) -> str:
    header = (
        "You are an interactive presentation practice assistant. The user is practicing a presentation"
    )
    slide = (
        f'The current slide is titled "{slide_title or "Untitled Slide"}" and its content is:\n'
        f"---\n{slide_content}\n---\n"
    )
    if user_response:
        return (
            f"{header}.\n{slide}"
            f'The user has just said: "{user_response}".\n'
            "Your role is to respond naturally, ask clarifying questions, or provide brief, relevant follow-up "
            "points based on their response and the slide content. Keep your responses concise and "
            "conversational. If the user's response seems complete for the current point, you can gently "
            "guide them to the next point or ask if they have questions."
        )
    return (
        f"{header} and has just arrived at a new slide.\n{slide}"
        "Your role is to initiate the conversation by asking a relevant, open-ended question about the "
        "slide's content to simulate an audience member or sales prospect. Make the question engaging and "
        "directly related to the provided slide material. Reply with the question only, ending with a "
        "question mark. Keep your question concise."
    )


# =========================
# Single-slide text
# =========================
SINGLE_SLIDE_SYSTEM_PROMPT = (
    "You are an expert presentation designer. Create concise, visually structured slides with clear "
    "titles and bullet points."
)

SINGLE_SLIDE_USER_TMPL = (
    "Create a presentation slide about the following topic:\n\n{prompt}\n\n"
    "Format the response as follows:\n# [Title of the slide]\n\n"
    "[Content of the slide with bullet points using • or numbered lists where appropriate]\n\n"
    "Make the content concise, informative, and visually structured. Use an energetic and bold tone.\n"
    "Focus on creating content for a single slide that is part of a larger presentation."
)


# =========================
# URL summary
# =========================
URL_SUMMARY_SYSTEM_PROMPT = "You are an expert at summarizing content. Provide a concise summary of the given text."


def build_url_summary_prompt(url: str, text: str) -> str:
    return f"Summarize the following content from {url}:\n\n{text}"
