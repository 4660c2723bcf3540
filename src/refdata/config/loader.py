"""Loader pipeline defaults read from the environment."""

from __future__ import annotations

from refdata.domain.loader_pipeline.context import DEFAULT_BATCH_SIZE, LoaderConfig

from .env import env_bool, env_int, env_str


def get_loader_config(*, source: str | None = None) -> LoaderConfig:
    return LoaderConfig(
        batch_size=env_int("REFDATA_BATCH_SIZE", DEFAULT_BATCH_SIZE, minimum=1),
        auto_apply_changes=env_bool("REFDATA_AUTO_APPLY", default=False),
        fail_on_validation_error=env_bool("REFDATA_FAIL_ON_VALIDATION_ERROR", default=False),
        publish_events=env_bool("REFDATA_PUBLISH_EVENTS", default=True),
        incremental_mode=env_bool("REFDATA_INCREMENTAL", default=False),
        source=source or env_str("REFDATA_SOURCE"),
    )
