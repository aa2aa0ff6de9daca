"""
Auditor factory.

Every category shares the same Auditor class; this module decides which
prompt builders, enrichment passes and temperature each one gets.
"""
from typing import Dict, List

from ..core.config import AuditorSettings, ServerConfig
from ..core.types import AUDIT_CATEGORIES, FAST_MODE_CATEGORIES, AuditType
from .base import Auditor, PostProcessor
from .completeness import apply_completeness_markers
from .performance import apply_performance_patterns
from .prompts import generate_fast_mode_prompt, generate_prompt
from .security import SECURITY_TEMPERATURE, enrich_security_issues

DEFAULT_TEMPERATURE = 0.1

POST_PROCESSORS: Dict[AuditType, List[PostProcessor]] = {
    AuditType.SECURITY: [enrich_security_issues],
    AuditType.COMPLETENESS: [apply_completeness_markers],
    AuditType.PERFORMANCE: [apply_performance_patterns],
}


def create_auditor(audit_type: AuditType, settings: AuditorSettings, client, model_manager) -> Auditor:
    audit_type = AuditType(audit_type)
    if audit_type == AuditType.ALL:
        raise ValueError('Cannot create an auditor for "all"; use a specific audit type')

    return Auditor(
        category=audit_type,
        settings=settings,
        client=client,
        model_manager=model_manager,
        prompt_builder=generate_prompt,
        fast_prompt_builder=generate_fast_mode_prompt if audit_type in FAST_MODE_CATEGORIES else None,
        post_processors=list(POST_PROCESSORS.get(audit_type, [])),
        temperature=SECURITY_TEMPERATURE if audit_type == AuditType.SECURITY else DEFAULT_TEMPERATURE,
    )


def create_all_auditors(config: ServerConfig, client, model_manager) -> Dict[AuditType, Auditor]:
    """One auditor per configured category, disabled ones included."""
    auditors = {}
    for audit_type in AUDIT_CATEGORIES:
        settings = config.auditor_settings(audit_type)
        if settings is not None:
            auditors[audit_type] = create_auditor(audit_type, settings, client, model_manager)
    return auditors


def get_supported_audit_types() -> List[AuditType]:
    return list(AUDIT_CATEGORIES)


__all__ = [
    "Auditor",
    "create_all_auditors",
    "create_auditor",
    "get_supported_audit_types",
]
