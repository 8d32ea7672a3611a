"""
Service for language detection and Dockerfile generation.

Handles:
- Best-effort language detection from the repository URL
- Template selection per language family
- Template variable substitution into a BuildSpec
"""
import logging
import re
from string import Template
from typing import Dict, Optional, Tuple

from shipyard.core.config import settings
from shipyard.core.exceptions import InvalidRequestError
from shipyard.services.deployment.runtime_base import BuildSpec

logger = logging.getLogger(__name__)


GO_TEMPLATE = Template("""\
FROM golang:1.24-alpine AS builder
RUN apk add --no-cache git ca-certificates
WORKDIR /app
RUN git clone $repo_url .
RUN go mod download
RUN CGO_ENABLED=0 GOOS=linux go build -a -installsuffix cgo -o main .

FROM alpine:3.19
RUN apk --no-cache add ca-certificates
WORKDIR /root/
COPY --from=builder /app/main .
ENV PORT=$container_port
EXPOSE $container_port
CMD ["./main"]
""")

NODE_TEMPLATE = Template("""\
FROM node:22-alpine AS builder
RUN apk add --no-cache git
WORKDIR /app
RUN git clone $repo_url .
RUN npm ci --omit=dev

FROM node:22-alpine
WORKDIR /app
COPY --from=builder /app .
ENV PORT=$container_port
EXPOSE $container_port
CMD ["npm", "start"]
""")

PYTHON_TEMPLATE = Template("""\
FROM python:3.11-alpine AS builder
RUN apk add --no-cache git
WORKDIR /app
RUN git clone $repo_url .

FROM python:3.11-alpine
WORKDIR /app
COPY --from=builder /app .
RUN pip install --no-cache-dir -r requirements.txt
ENV PORT=$container_port
EXPOSE $container_port
CMD ["python", "app.py"]
""")


# Language family to (base image, template, container port)
LANGUAGE_TEMPLATES: Dict[str, Tuple[str, Template, int]] = {
    "go": ("golang:1.24-alpine", GO_TEMPLATE, 8080),
    "node": ("node:22-alpine", NODE_TEMPLATE, 3000),
    "python": ("python:3.11-alpine", PYTHON_TEMPLATE, 8000),
}

# Whole-word hints, checked in order; the first family with a hit wins
LANGUAGE_KEYWORDS = (
    ("go", {"go", "golang"}),
    ("node", {"node", "nodejs", "js", "javascript", "ts", "typescript", "npm", "express"}),
    ("python", {"python", "py", "django", "flask", "fastapi"}),
)

# Substring hints for names like "mygolangapi"; too-short words are left out
LANGUAGE_SUBSTRINGS = (
    ("go", ("golang",)),
    ("node", ("node", "javascript")),
    ("python", ("python",)),
)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


def detect_language(repo_url: str, default: Optional[str] = None) -> Tuple[str, str]:
    """
    Guess the language family of a repository from its URL.

    This is a heuristic, not static analysis:
    1. whole words of the URL (split on anything non-alphanumeric)
    2. substrings for longer, unambiguous keywords
    3. the default family

    Args:
        repo_url: Repository URL
        default: Fallback family (default from settings)

    Returns:
        Tuple of (language, reason)
    """
    default = default or settings.DEFAULT_LANGUAGE
    lowered = repo_url.lower()
    tokens = set(_TOKEN_RE.findall(lowered))

    for language, keywords in LANGUAGE_KEYWORDS:
        hit = tokens & keywords
        if hit:
            return language, f"keyword '{sorted(hit)[0]}' in repository URL"

    for language, fragments in LANGUAGE_SUBSTRINGS:
        for fragment in fragments:
            if fragment in lowered:
                return language, f"'{fragment}' found in repository URL"

    return default, "default (no language hint in repository URL)"


class DockerfileService:
    """
    Service for Dockerfile generation.

    Responsibilities:
    - Detect the language family of a repository
    - Render the family's Dockerfile template into a BuildSpec
    """

    def __init__(self, default_language: Optional[str] = None):
        """
        Initialize DockerfileService.

        Args:
            default_language: Family used when detection is inconclusive
        """
        self.default_language = default_language or settings.DEFAULT_LANGUAGE
        if self.default_language not in LANGUAGE_TEMPLATES:
            raise ValueError(f"Unsupported default language: {self.default_language}")

    def supported_languages(self):
        """Language families with a template."""
        return sorted(LANGUAGE_TEMPLATES)

    def detect_language(self, repo_url: str) -> str:
        """Detect the language family, falling back to the default family."""
        language, reason = detect_language(repo_url, self.default_language)
        logger.info(f"Detected language '{language}' for {repo_url}: {reason}")
        return language

    def build_spec_for(self, language: str, repo_url: str) -> BuildSpec:
        """
        Render the build instructions for a language family.

        Args:
            language: Language family (go, node, python)
            repo_url: Repository to clone inside the build

        Returns:
            BuildSpec with the rendered Dockerfile

        Raises:
            InvalidRequestError: If there is no template for ``language``
                or the URL cannot be embedded safely
        """
        if language not in LANGUAGE_TEMPLATES:
            raise InvalidRequestError("language", f"no build template for '{language}'")
        if any(ch.isspace() for ch in repo_url):
            raise InvalidRequestError("repo_url", "must not contain whitespace")

        base_image, template, container_port = LANGUAGE_TEMPLATES[language]
        dockerfile = template.substitute(repo_url=repo_url, container_port=container_port)
        return BuildSpec(
            language=language,
            base_image=base_image,
            dockerfile=dockerfile,
            container_port=container_port,
        )


# Singleton instance
dockerfile_service = DockerfileService()
