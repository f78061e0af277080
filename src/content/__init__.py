"""
Content: from curriculum concepts to ready-to-serve questions.

Core modules:
- curriculum: ordered, prerequisite-aware concepts per track
- populator: next concept of a track -> UnitDescriptor, spaced repetition
- preparer: UnitDescriptor -> ReadyUnit (facts + questions)
- assembler: fact + boundary level -> Question with one distractor
"""

from .assembler import QuestionAssembler, render_text
from .curriculum import Concept, Curriculum, concept_key, default_curriculum
from .populator import SKIP_SEQUENCE, ContentPopulator, RepositionResult, next_skip
from .preparer import DEFAULT_UNIT_SIZE, ContentPreparer

__all__ = [
    "QuestionAssembler",
    "render_text",
    "Concept",
    "Curriculum",
    "concept_key",
    "default_curriculum",
    "ContentPopulator",
    "RepositionResult",
    "SKIP_SEQUENCE",
    "next_skip",
    "ContentPreparer",
    "DEFAULT_UNIT_SIZE",
]
