from .book import BOOK_STEPS, BOOK_TEMPLATES, DEFAULT_STEP_PROMPTS

FLOWS = {
    "BOOK": {"steps": BOOK_STEPS, "templates": BOOK_TEMPLATES},
}
