"""
Lightweight, language-agnostic code metrics.

Regex counts only; good enough to size the prompt and fill the coverage
block, not a parser.
"""
import re
from dataclasses import dataclass
from typing import Dict, List

FUNCTION_PATTERNS: List[re.Pattern] = [
    re.compile(r"\bfunction\s+\w+"),                    # JavaScript / TypeScript
    re.compile(r"\bdef\s+\w+"),                         # Python / Ruby
    re.compile(r"\bfn\s+\w+"),                          # Rust
    re.compile(r"\bfunc\s+\w+"),                        # Go / Swift
    re.compile(
        r"^\s*(?!(?:function|def|fn|func|else|return|new)\b)\w+\s+\w+\s*\([^)]*\)\s*\{", re.M
    ),                                                  # C-style declarations
]

CLASS_PATTERN = re.compile(r"^\s*(?:export\s+)?(?:abstract\s+)?(?:class|struct|interface)\s+\w+", re.M)

BRANCH_PATTERN = re.compile(r"\b(?:if|elif|else|while|for|switch|case|try|catch|except)\b")


@dataclass
class CodeMetrics:
    line_count: int = 0
    function_count: int = 0
    class_count: int = 0
    complexity: int = 1

    def to_dict(self) -> Dict[str, int]:
        return {
            "lineCount": self.line_count,
            "functionCount": self.function_count,
            "classCount": self.class_count,
            "complexity": self.complexity,
        }


def analyze_code_metrics(code: str) -> CodeMetrics:
    """Count lines, functions and classes; complexity is branches per function."""
    function_count = sum(len(p.findall(code)) for p in FUNCTION_PATTERNS)
    branches = len(BRANCH_PATTERN.findall(code))
    return CodeMetrics(
        line_count=len(code.split("\n")),
        function_count=function_count,
        class_count=len(CLASS_PATTERN.findall(code)),
        complexity=round((1 + branches) / max(function_count, 1)),
    )
