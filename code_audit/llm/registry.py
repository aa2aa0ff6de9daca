"""
Built-in model catalog and preference tables.

The ranking lists are ordered best first; the selector weights them by
position. Names must match Ollama tags exactly.
"""
from typing import Dict, List

from ..core.types import AuditType, ModelConfig, ModelPerformance

SEC = AuditType.SECURITY
COMP = AuditType.COMPLETENESS
PERF = AuditType.PERFORMANCE
QUAL = AuditType.QUALITY
ARCH = AuditType.ARCHITECTURE
TEST = AuditType.TESTING
DOCS = AuditType.DOCUMENTATION


def _model(name, display_name, specialization, top_p, fallbacks, speed, accuracy, resources):
    return ModelConfig(
        name=name,
        display_name=display_name,
        specialization=list(specialization),
        max_tokens=4096,
        temperature=0.1,
        top_p=top_p,
        fallback_models=list(fallbacks),
        performance=ModelPerformance(speed=speed, accuracy=accuracy, resource_usage=resources),
    )


DEFAULT_MODELS: List[ModelConfig] = [
    _model("codellama:7b", "CodeLlama 7B", [SEC, COMP, QUAL], 0.9,
           ["codellama:13b", "deepseek-coder:6.7b"], "fast", "medium", "medium"),
    _model("codellama:13b", "CodeLlama 13B", [SEC, COMP, QUAL, ARCH], 0.9,
           ["codellama:7b", "deepseek-coder:6.7b"], "medium", "high", "medium"),
    _model("deepseek-coder:6.7b", "DeepSeek Coder 6.7B", [PERF, QUAL, ARCH], 0.95,
           ["codellama:7b", "starcoder2:7b"], "medium", "high", "medium"),
    _model("deepseek-coder:33b", "DeepSeek Coder 33B", [PERF, ARCH, QUAL, DOCS], 0.95,
           ["deepseek-coder:6.7b", "codellama:13b"], "slow", "high", "high"),
    _model("starcoder2:7b", "StarCoder2 7B", [TEST, QUAL, COMP], 0.9,
           ["codellama:7b", "deepseek-coder:6.7b"], "fast", "medium", "medium"),
    _model("starcoder2:15b", "StarCoder2 15B", [TEST, ARCH, DOCS], 0.9,
           ["starcoder2:7b", "codellama:13b"], "medium", "high", "high"),
    _model("qwen2.5-coder:7b", "Qwen2.5 Coder 7B", [COMP, QUAL, DOCS], 0.9,
           ["codellama:7b", "starcoder2:7b"], "fast", "medium", "medium"),
    _model("llama3.1:8b", "Llama 3.1 8B", [DOCS, ARCH], 0.9,
           ["codellama:7b"], "fast", "medium", "medium"),
    _model("granite-code:8b", "Granite Code 8B", [SEC, QUAL, COMP], 0.9,
           ["codellama:7b", "deepseek-coder:6.7b"], "fast", "medium", "medium"),
]

MODEL_PRIORITY: Dict[AuditType, List[str]] = {
    SEC: [
        "granite-code:8b",
        "codellama:13b",
        "codellama:7b",
        "deepseek-coder:6.7b",
        "qwen2.5-coder:7b",
    ],
    COMP: [
        "codellama:13b",
        "qwen2.5-coder:7b",
        "starcoder2:7b",
        "codellama:7b",
        "granite-code:8b",
    ],
    PERF: [
        "deepseek-coder:33b",
        "deepseek-coder:6.7b",
        "codellama:13b",
        "granite-code:8b",
        "codellama:7b",
    ],
    QUAL: [
        "deepseek-coder:33b",
        "deepseek-coder:6.7b",
        "codellama:13b",
        "qwen2.5-coder:7b",
        "starcoder2:15b",
        "granite-code:8b",
    ],
    ARCH: [
        "deepseek-coder:33b",
        "starcoder2:15b",
        "codellama:13b",
        "deepseek-coder:6.7b",
        "llama3.1:8b",
    ],
    TEST: [
        "starcoder2:15b",
        "starcoder2:7b",
        "deepseek-coder:6.7b",
        "codellama:13b",
        "qwen2.5-coder:7b",
    ],
    DOCS: [
        "deepseek-coder:33b",
        "llama3.1:8b",
        "qwen2.5-coder:7b",
        "starcoder2:15b",
        "codellama:13b",
    ],
    AuditType.ALL: [
        "deepseek-coder:33b",
        "codellama:13b",
        "deepseek-coder:6.7b",
        "starcoder2:15b",
        "granite-code:8b",
        "codellama:7b",
    ],
}

# Small models first: rapid feedback
FAST_MODE_MODELS: List[str] = [
    "codellama:7b",
    "granite-code:8b",
    "starcoder2:7b",
    "qwen2.5-coder:7b",
    "deepseek-coder:6.7b",
]

# Large models first: accuracy over speed
THOROUGH_MODE_MODELS: List[str] = [
    "deepseek-coder:33b",
    "codellama:13b",
    "starcoder2:15b",
    "deepseek-coder:6.7b",
]

LANGUAGE_MODEL_PREFERENCES: Dict[str, List[str]] = {
    "javascript": ["deepseek-coder:6.7b", "codellama:13b", "qwen2.5-coder:7b"],
    "typescript": ["deepseek-coder:6.7b", "codellama:13b", "qwen2.5-coder:7b"],
    "python": ["deepseek-coder:33b", "codellama:13b", "granite-code:8b"],
    "java": ["deepseek-coder:6.7b", "granite-code:8b", "codellama:13b"],
    "csharp": ["deepseek-coder:6.7b", "codellama:13b", "granite-code:8b"],
    "cpp": ["deepseek-coder:6.7b", "codellama:13b", "granite-code:8b"],
    "c": ["codellama:13b", "granite-code:8b", "deepseek-coder:6.7b"],
    "go": ["deepseek-coder:6.7b", "codellama:13b", "granite-code:8b"],
    "rust": ["deepseek-coder:6.7b", "codellama:13b", "granite-code:8b"],
    "php": ["codellama:13b", "deepseek-coder:6.7b", "qwen2.5-coder:7b"],
    "ruby": ["codellama:13b", "deepseek-coder:6.7b", "granite-code:8b"],
    "swift": ["codellama:13b", "deepseek-coder:6.7b", "granite-code:8b"],
    "kotlin": ["deepseek-coder:6.7b", "codellama:13b", "granite-code:8b"],
    "scala": ["deepseek-coder:6.7b", "codellama:13b", "granite-code:8b"],
    "html": ["qwen2.5-coder:7b", "codellama:7b", "deepseek-coder:6.7b"],
    "css": ["qwen2.5-coder:7b", "codellama:7b", "deepseek-coder:6.7b"],
    "sql": ["granite-code:8b", "codellama:13b", "deepseek-coder:6.7b"],
    "shell": ["codellama:13b", "granite-code:8b", "deepseek-coder:6.7b"],
    "yaml": ["qwen2.5-coder:7b", "codellama:7b", "granite-code:8b"],
    "json": ["qwen2.5-coder:7b", "codellama:7b", "deepseek-coder:6.7b"],
    "dockerfile": ["granite-code:8b", "codellama:13b", "deepseek-coder:6.7b"],
}

RECOMMENDED_MODELS: List[str] = [
    "codellama:7b",         # general purpose, fast
    "deepseek-coder:6.7b",  # performance analysis
    "granite-code:8b",      # security analysis
    "starcoder2:7b",        # testing analysis
]
