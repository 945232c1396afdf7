"""Agent, style profile and conversation schemas."""

import json
from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PositiveInt


# Style profile
class Vocabulary(BaseModel):
    model_config = ConfigDict(extra="ignore")

    common_words_phrases: List[str] = Field(default_factory=list)
    jargon: List[str] = Field(default_factory=list)


class Keyword(BaseModel):
    model_config = ConfigDict(extra="ignore")

    topic: str
    description: str = ""


class Syntax(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sentence_length: str = ""
    capitalization: str = ""
    punctuation: str = ""
    formatting: str = ""


class VocabularyAnalysis(BaseModel):
    """First profiling stage: what the user says."""

    model_config = ConfigDict(extra="ignore")

    vocabulary: Vocabulary
    keywords: List[Keyword]


class ToneAnalysis(BaseModel):
    """Second profiling stage: how the user says it."""

    model_config = ConfigDict(extra="ignore")

    tone: str
    syntax: Syntax
    patterns_per_topic: Dict[str, str] = Field(default_factory=dict)


class StyleProfile(BaseModel):
    """Structured description of a user's communication style."""

    vocabulary: Vocabulary = Field(default_factory=Vocabulary)
    keywords: List[Keyword] = Field(default_factory=list)
    tone: str = ""
    syntax: Syntax = Field(default_factory=Syntax)
    patterns_per_topic: Dict[str, str] = Field(default_factory=dict)
    # Raw model text kept when a stage produced no structured output
    raw_analysis: Optional[str] = None

    def to_prompt(self) -> str:
        return self.model_dump_json(exclude_none=True)

    def topic_patterns_json(self) -> str:
        return json.dumps(self.patterns_per_topic)

    def keywords_csv(self) -> str:
        return ",".join(k.topic.replace(",", " ").strip() for k in self.keywords if k.topic.strip())

    @classmethod
    def from_prompt(cls, prompt: Optional[str]) -> "StyleProfile":
        """Parse a persisted profile; unparseable text is kept as raw analysis."""
        if not prompt:
            return cls()
        try:
            return cls.model_validate_json(prompt)
        except ValueError:
            return cls(raw_analysis=prompt)


# Decision engine stage outputs
class ReplyDecision(BaseModel):
    to_reply: bool


class AnswerText(BaseModel):
    text: str = Field(min_length=1)


class TrivialityDecision(BaseModel):
    is_trivial: bool


class ConfidenceAssessment(BaseModel):
    confidence: Literal["high", "medium", "low"]
    reasoning: str = ""


ConfidenceScore = Literal["high", "medium", "low"]


class ConversationState(BaseModel):
    """State threaded through one decision engine invocation. Never persisted."""

    question: str
    conversation_history: List[str] = Field(default_factory=list)
    style_profile: StyleProfile = Field(default_factory=StyleProfile)
    keywords: List[str] = Field(default_factory=list)
    retrieved_context: List[str] = Field(default_factory=list)
    to_reply: bool = True
    is_trivial: bool = False
    draft_response: str = ""
    confidence_score: Optional[ConfidenceScore] = None
    confidence_reasoning: str = ""


# Terminal outcomes
class NoReply(BaseModel):
    kind: Literal["no_reply"] = "no_reply"
    answer: str = "no reply needed"


class TrivialAnswer(BaseModel):
    kind: Literal["trivial"] = "trivial"
    answer: str


class ScoredAnswer(BaseModel):
    kind: Literal["scored"] = "scored"
    answer: str
    confidence: ConfidenceScore
    reasoning: str = ""
    used_fallback: bool = False


ConversationOutcome = Union[NoReply, TrivialAnswer, ScoredAnswer]


# API
class AgentInitRequest(BaseModel):
    fid: PositiveInt
    personality: Optional[str] = Field(default=None, min_length=1)
    tone: Optional[str] = Field(default=None, min_length=1)
    movie_character: Optional[str] = Field(default=None, min_length=1)


class AgentReinitRequest(BaseModel):
    refresh_casts: bool = False
    refresh_replies: bool = False
    only_rag: bool = False
    personality: Optional[str] = Field(default=None, min_length=1)
    tone: Optional[str] = Field(default=None, min_length=1)
    movie_character: Optional[str] = Field(default=None, min_length=1)


class AskRequest(BaseModel):
    question: str = Field(min_length=1)
    conversation_history: List[str] = Field(default_factory=list)


class AgentResponse(BaseModel):
    """Public view of an agent. Credentials are never exposed."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    fid: Optional[int] = None
    creator_fid: int
    status: str
    username: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    keywords: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
