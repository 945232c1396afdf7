"""Two-stage style profiling of a user's posts."""

import json
import logging
from typing import Sequence

from twincast.agents.prompts import TONE_PROMPT, VOCABULARY_PROMPT
from twincast.agents.structured import generate_structured
from twincast.config import settings
from twincast.schemas.agents import StyleProfile, Syntax, ToneAnalysis, Vocabulary, VocabularyAnalysis
from twincast.services.llm_client import LLMClient

logger = logging.getLogger(__name__)


class StyleProfiler:
    """Derives a StyleProfile: vocabulary and topics first, then tone, syntax and topic patterns."""

    def __init__(self, llm: LLMClient, max_chars: int = settings.PROFILE_MAX_CHARS):
        self.llm = llm
        self.max_chars = max_chars

    def _posts_json(self, texts: Sequence[str]) -> str:
        """Newest-first texts serialised as a JSON array, truncated to the budget."""
        selected = []
        size = 2
        for text in texts:
            encoded = json.dumps(text)
            if size + len(encoded) + 2 > self.max_chars:
                break
            selected.append(text)
            size += len(encoded) + 2
        return json.dumps(selected, ensure_ascii=False)

    def build_profile(self, texts: Sequence[str]) -> StyleProfile:
        """
        Analyse posts and return the style profile.

        Malformed model output is salvaged: the raw text is kept under
        ``raw_analysis`` and the stage contributes empty fields.

        Raises:
            ExternalServiceError: If a model call fails
        """
        posts = self._posts_json(texts)
        logger.info(f"[profiler] analysing {len(texts)} posts ({len(posts)} characters)")
        salvaged = []

        def salvage_vocabulary(raw: str) -> VocabularyAnalysis:
            salvaged.append(raw)
            return VocabularyAnalysis(vocabulary=Vocabulary(), keywords=[])

        vocabulary = generate_structured(
            self.llm,
            [{"role": "user", "content": VOCABULARY_PROMPT.format(posts=posts)}],
            VocabularyAnalysis,
            salvage_vocabulary,
            label="profiler:vocabulary",
        )

        def salvage_tone(raw: str) -> ToneAnalysis:
            salvaged.append(raw)
            return ToneAnalysis(tone="", syntax=Syntax(), patterns_per_topic={})

        analysis = vocabulary.model_dump_json() if not salvaged else salvaged[0]
        tone = generate_structured(
            self.llm,
            [{"role": "user", "content": TONE_PROMPT.format(analysis=analysis, posts=posts)}],
            ToneAnalysis,
            salvage_tone,
            label="profiler:tone",
        )

        profile = StyleProfile(
            vocabulary=vocabulary.vocabulary,
            keywords=vocabulary.keywords,
            tone=tone.tone,
            syntax=tone.syntax,
            patterns_per_topic=tone.patterns_per_topic,
            raw_analysis="\n\n".join(salvaged) or None,
        )
        logger.info(
            f"[profiler] profile built with {len(profile.keywords)} keywords and "
            f"{len(profile.patterns_per_topic)} topic patterns"
        )
        return profile
