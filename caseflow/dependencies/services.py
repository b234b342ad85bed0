"""
Service dependencies for FastAPI routes.

Services are built per request from their collaborators; the only shared
state is the lease registry held on ``app.state``. Tests replace the store
and the invoker through ``app.dependency_overrides``.
"""
from __future__ import annotations

from typing import Dict

from fastapi import Depends, Request

from caseflow.services.analysis_invoker import AnalysisInvoker
from caseflow.services.analysis_request import AnalysisRequestBuilder
from caseflow.services.case_lifecycle import CaseLifecycleController, PreProcessHook
from caseflow.services.case_store import CaseStore
from caseflow.services.document_cleanup import DocumentCleanupStage
from caseflow.services.lookup_table import LookupTableExtractor
from caseflow.services.persistence_verifier import PersistenceVerifier
from caseflow.services.processing_leases import ProcessingLeaseRegistry
from caseflow.services.report_parser import MarkdownReportParser
from caseflow.services.text_extraction import TextExtractionStage


def get_case_store() -> CaseStore:
    return CaseStore()


def get_analysis_invoker() -> AnalysisInvoker:
    return AnalysisInvoker()


def get_text_extractor() -> TextExtractionStage:
    return TextExtractionStage()


def get_leases(request: Request) -> ProcessingLeaseRegistry:
    """The application-wide lease registry."""
    return request.app.state.leases


def get_pre_process_hooks() -> Dict[str, PreProcessHook]:
    """
    Per-module hooks run before a case is marked processing.

    None are configured: lookup-table upkeep lives outside this service.
    Deployments that need one override this provider, keyed by module type.
    """
    return {}


def get_lifecycle_controller(
    store: CaseStore = Depends(get_case_store),
    invoker: AnalysisInvoker = Depends(get_analysis_invoker),
    extractor: TextExtractionStage = Depends(get_text_extractor),
    leases: ProcessingLeaseRegistry = Depends(get_leases),
    pre_process_hooks: Dict[str, PreProcessHook] = Depends(get_pre_process_hooks),
) -> CaseLifecycleController:
    return CaseLifecycleController(
        store=store,
        extractor=extractor,
        request_builder=AnalysisRequestBuilder(),
        invoker=invoker,
        verifier=PersistenceVerifier(store),
        cleanup=DocumentCleanupStage(store),
        leases=leases,
        pre_process_hooks=pre_process_hooks,
    )


def get_report_parser() -> MarkdownReportParser:
    return MarkdownReportParser()


def get_lookup_table_extractor() -> LookupTableExtractor:
    return LookupTableExtractor()
