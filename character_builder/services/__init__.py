"""Service layer for prompt rendering, reply scoring and character testing."""

from __future__ import annotations

from .character_testing import (  # noqa: F401
    BatchTestResult,
    ChatTurnResult,
    TestScenario,
    build_test_scenarios,
    run_batch_test,
    run_chat_turn,
)
from .evaluator import (  # noqa: F401
    BatchReport,
    EvaluationRecord,
    EvaluationVocabulary,
    evaluate,
    summarize_results,
)
from .prompt_composer import (  # noqa: F401
    ConversationTurn,
    PromptAnalysis,
    analyze_prompt,
    render_conversational_prompt,
    render_single_prompt,
)
from .tier_policy import clamp_for_tier  # noqa: F401

__all__ = [
    "BatchReport",
    "BatchTestResult",
    "ChatTurnResult",
    "ConversationTurn",
    "EvaluationRecord",
    "EvaluationVocabulary",
    "PromptAnalysis",
    "TestScenario",
    "analyze_prompt",
    "build_test_scenarios",
    "clamp_for_tier",
    "evaluate",
    "render_conversational_prompt",
    "render_single_prompt",
    "run_batch_test",
    "run_chat_turn",
    "summarize_results",
]
