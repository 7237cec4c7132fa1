import os
from typing import Dict

from dotenv import load_dotenv

load_dotenv()

# --------- AI endpoint ---------
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN")
GITHUB_AI_ENDPOINT = os.getenv("GITHUB_AI_ENDPOINT", "https://models.github.ai/inference")
GITHUB_AI_MODEL = os.getenv("GITHUB_AI_MODEL", "openai/gpt-4.1")
AI_TEMPERATURE = float(os.getenv("AI_TEMPERATURE", "0.1"))
AI_MAX_TOKENS = int(os.getenv("AI_MAX_TOKENS", "1024"))

# Only this many issues are sent to the correction assistant
CORRECTION_ISSUE_LIMIT = int(os.getenv("CORRECTION_ISSUE_LIMIT", "5"))

# --------- Files ---------
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
EXPORT_DIR = os.getenv("EXPORT_DIR", "exports")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Slider weights on a 0-100 scale
DEFAULT_PRIORITIES: Dict[str, float] = {
    "PriorityLevel": 75,
    "RequestedTaskIds": 50,
    "Fairness": 25,
}
