"""Summarizer backends used by the curator.

A summarizer turns text into a more compressed rendition for a target
level: ``root`` (session digest of a fresh transcript delta), ``summary``,
``oneliner`` or ``tag``. Any failure surfaces as
:class:`~lucidity.errors.SummarizationError`; the curator logs it and leaves
the node untouched until the next pass.

Backends:

- ``command``: shells out to a model CLI (``claude --print --model haiku``
  by default) with a prompt rendered from ``lucidity/templates/<level>.md``.
- ``truncate``: deterministic, offline heuristics. Also used as the
  fallback digest when root summarization fails.
- ``anthropic``: calls the Messages API directly through the ``anthropic``
  SDK, for hosts without the model CLI. Reads ``ANTHROPIC_API_KEY``.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
from abc import ABC, abstractmethod
from collections import Counter
from pathlib import Path
from typing import Any

import anthropic
from jinja2 import Environment, FileSystemLoader

from lucidity.errors import SummarizationError

log = logging.getLogger(__name__)

SUMMARY_LEVELS = ("root", "summary", "oneliner", "tag")

_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

ROOT_MAX_WORDS = 500
DEFAULT_API_MODEL = "claude-sonnet-4-20250514"


def _check_level(level: str) -> None:
    if level not in SUMMARY_LEVELS:
        raise ValueError(f"Unknown summary level '{level}'; expected one of {list(SUMMARY_LEVELS)}")


def _get_env() -> Environment:
    """Create a Jinja2 environment loading from lucidity/templates/."""
    return Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )


def render_prompt(level: str, content: str, agent: str | None = None) -> str:
    """Render the prompt template for *level* around *content*."""
    _check_level(level)
    template = _get_env().get_template(f"{level}.md")
    return template.render(content=content, agent=agent, max_words=ROOT_MAX_WORDS)


class Summarizer(ABC):
    """Base class for summarizer backends."""

    @abstractmethod
    def summarize(self, content: str, level: str) -> str:
        """Return replacement text for *content* at *level*.

        Raises:
            SummarizationError: If no replacement could be produced.
        """


class CommandSummarizer(Summarizer):
    """Summarize by shelling out to a model CLI.

    Parameters
    ----------
    command:
        Command line to run; the rendered prompt is appended as the final
        argument. Defaults to ``claude --print --model <model>``.
    model:
        Model passed to the default command.
    timeout:
        Seconds before the call is abandoned.
    cwd:
        Working directory for the subprocess.
    agent:
        Agent name interpolated into the root prompt.
    """

    def __init__(
        self,
        command: str | None = None,
        model: str = "haiku",
        timeout: float = 30,
        cwd: Path | None = None,
        agent: str | None = None,
    ) -> None:
        self._command = command
        self._model = model
        self._timeout = timeout
        self._cwd = cwd
        self._agent = agent

    def _argv(self) -> list[str]:
        if self._command:
            return shlex.split(self._command)
        return ["claude", "--print", "--model", self._model]

    def summarize(self, content: str, level: str) -> str:
        prompt = render_prompt(level, content, self._agent)
        cmd = self._argv()
        cmd.append(prompt)

        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                cwd=str(self._cwd) if self._cwd else None,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise SummarizationError(f"summarizer timed out ({self._timeout} s)") from exc
        except FileNotFoundError as exc:
            raise SummarizationError(f"summarizer command not found: {cmd[0]}") from exc
        except OSError as exc:
            raise SummarizationError(f"summarizer could not start: {exc}") from exc

        if result.returncode != 0:
            raise SummarizationError(
                f"summarizer failed (rc={result.returncode}): {result.stderr[:500]}"
            )
        text = result.stdout.strip()
        if not text:
            raise SummarizationError("summarizer returned empty output")
        return text


class AnthropicSummarizer(Summarizer):
    """Summarize through the Anthropic Messages API.

    Parameters
    ----------
    model:
        Claude model identifier.
    timeout:
        Seconds before a request is abandoned.
    max_tokens:
        Upper bound on the generated reply.
    agent:
        Agent name interpolated into the root prompt.
    client:
        Preconfigured ``anthropic.Anthropic`` client. Built on first use
        from ``ANTHROPIC_API_KEY`` when omitted.
    """

    def __init__(
        self,
        model: str = DEFAULT_API_MODEL,
        timeout: float = 30,
        max_tokens: int = 1024,
        agent: str | None = None,
        client: anthropic.Anthropic | None = None,
    ) -> None:
        self._model = model
        self._timeout = timeout
        self._max_tokens = max_tokens
        self._agent = agent
        self._client = client

    def _get_client(self) -> anthropic.Anthropic:
        if self._client is None:
            if not os.environ.get("ANTHROPIC_API_KEY"):
                raise SummarizationError("ANTHROPIC_API_KEY is not set")
            self._client = anthropic.Anthropic(timeout=self._timeout)
        return self._client

    def summarize(self, content: str, level: str) -> str:
        prompt = render_prompt(level, content, self._agent)
        client = self._get_client()

        try:
            response = client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as exc:
            raise SummarizationError(
                f"Anthropic API error (status={exc.status_code}): {str(exc)[:500]}"
            ) from exc
        except anthropic.AnthropicError as exc:
            raise SummarizationError(f"Anthropic request failed: {exc}") from exc

        usage = getattr(response, "usage", None)
        if usage is not None:
            log.debug(
                "Summarized to %s: input=%s output=%s tokens",
                level, usage.input_tokens, usage.output_tokens,
            )

        texts = [block.text for block in response.content if getattr(block, "type", None) == "text"]
        text = "\n".join(texts).strip()
        if not text:
            raise SummarizationError("Anthropic API returned no text")
        return text


_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")
_WORD_RE = re.compile(r"[A-Za-z][A-Za-z0-9_-]{3,}")
_STOPWORDS = frozenset(
    "this that with from have were been will would could should there their "
    "they them then than what when where which while about into your just "
    "also some more very only over such here".split()
)


class TruncatingSummarizer(Summarizer):
    """Offline summarizer built from simple text heuristics.

    - ``root``: the newest ``root_lines`` lines, capped at ``root_chars``
    - ``summary``: the first three sentences
    - ``oneliner``: the first sentence
    - ``tag``: the five most frequent non-trivial words
    """

    def __init__(self, root_lines: int = 50, root_chars: int = 2000) -> None:
        self._root_lines = root_lines
        self._root_chars = root_chars

    def summarize(self, content: str, level: str) -> str:
        _check_level(level)
        text = content.strip()
        if not text:
            raise SummarizationError("nothing to summarize")

        if level == "root":
            recent = "\n".join(text.split("\n")[-self._root_lines:])
            return recent[-self._root_chars:]

        flat = " ".join(text.split())
        sentences = [s for s in _SENTENCE_RE.split(flat) if s]
        if level == "summary":
            return _clip(" ".join(sentences[:3]), 500)
        if level == "oneliner":
            return _clip(sentences[0], 160)
        return _keywords(flat) or _clip(flat, 40)


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def _keywords(text: str, count: int = 5) -> str:
    words = [w.lower() for w in _WORD_RE.findall(text)]
    counts = Counter(w for w in words if w not in _STOPWORDS)
    first_seen = {w: i for i, w in reversed(list(enumerate(words)))}
    ranked = sorted(counts, key=lambda w: (-counts[w], first_seen[w]))
    return ", ".join(ranked[:count])


def get_summarizer(config: dict[str, Any], project_root: Path | None = None) -> Summarizer:
    """Build the summarizer selected by ``summarizer.backend``.

    Raises:
        ValueError: If the backend is unknown.
    """
    cfg = config.get("summarizer", {})
    backend = cfg.get("backend", "command")
    if backend == "command":
        return CommandSummarizer(
            command=cfg.get("command"),
            model=cfg.get("model", "haiku"),
            timeout=cfg.get("timeout", 30),
            cwd=project_root,
            agent=config.get("agent"),
        )
    if backend == "anthropic":
        return AnthropicSummarizer(
            model=cfg.get("api_model", DEFAULT_API_MODEL),
            timeout=cfg.get("timeout", 30),
            max_tokens=cfg.get("max_tokens", 1024),
            agent=config.get("agent"),
        )
    if backend == "truncate":
        return TruncatingSummarizer()
    raise ValueError(
        f"Unknown summarizer backend '{backend}'. Available: ['command', 'anthropic', 'truncate']"
    )
