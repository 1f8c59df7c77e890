"""Shared CLI utilities."""

import structlog
from rich.console import Console

from cli.config_models import AppConfig, RetryConfig, SyncConfig

console = Console()
logger = structlog.get_logger()


def build_remote(sync_config: SyncConfig, retry_config: RetryConfig | None = None):
    """SupabaseRemoteStore from config, or None when sync has no credentials."""
    from cli.retry import retry_from_config
    from sync.remote import SupabaseRemoteStore

    if not sync_config.has_credentials:
        return None
    return SupabaseRemoteStore(
        url=sync_config.supabase_url,
        api_key=sync_config.supabase_key,
        user_id=sync_config.user_id,
        access_token=sync_config.access_token,
        timeout=sync_config.request_timeout,
        **retry_from_config(retry_config or RetryConfig()),
    )


def get_components(config_model: AppConfig | None = None) -> dict:
    """Initialize all components from config."""
    from cli.config import load_config_model
    from learning import LearningApplier, LocalStore, PatternExtractor, PreferenceProfiler
    from learning.engine import LearningEngine
    from sync import SnapshotExporter, SyncEngine

    config_model = config_model or load_config_model()
    learning_cfg = config_model.learning
    sync_cfg = config_model.sync

    store = LocalStore(config_model.paths.db_path)
    extractor = PatternExtractor(
        store,
        initial_confidence=learning_cfg.initial_confidence,
        reinforcement_step=learning_cfg.reinforcement_step,
        mode_bonus=learning_cfg.mode_bonus,
        apply_threshold=learning_cfg.apply_threshold,
        max_phrase_words=learning_cfg.max_phrase_words,
    )
    profiler = PreferenceProfiler(
        store,
        alpha=learning_cfg.preference_alpha,
        choice_weight=learning_cfg.choice_weight,
        threshold=learning_cfg.preference_threshold,
    )
    applier = LearningApplier(extractor, profiler)

    sync_engine = SyncEngine(
        store,
        remote=build_remote(sync_cfg, config_model.retry),
        interval_seconds=sync_cfg.interval_seconds,
        max_attempts=sync_cfg.max_attempts,
        backoff_base=sync_cfg.backoff_base_seconds,
        backoff_max=sync_cfg.backoff_max_seconds,
    )

    engine = LearningEngine(
        store,
        extractor=extractor,
        profiler=profiler,
        applier=applier,
        sync=sync_engine,
        min_review_words=learning_cfg.min_review_words,
        onboarding_sessions=learning_cfg.onboarding_sessions,
        review_probability=learning_cfg.review_probability,
        ab_test_session_cap=learning_cfg.ab_test_session_cap,
        review_timeout_seconds=learning_cfg.review_timeout_seconds,
    )
    if not learning_cfg.enabled:
        engine.pause()

    return {
        "config_model": config_model,
        "store": store,
        "engine": engine,
        "sync": sync_engine,
        "exporter": SnapshotExporter(store),
    }
