from __future__ import annotations

from looplace.config import NBackConfig, PvtConfig


class ConfigValidationError(ValueError):
    pass


def validate_pvt_config(config: PvtConfig) -> None:
    if config.target_trials < 1:
        raise ConfigValidationError(
            f"target_trials must be >= 1 (got {config.target_trials})"
        )
    if config.min_iti_ms < 0:
        raise ConfigValidationError(
            f"min_iti_ms must be >= 0 (got {config.min_iti_ms})"
        )
    if config.max_iti_ms < config.min_iti_ms:
        raise ConfigValidationError(
            (
                f"max_iti_ms must be >= min_iti_ms "
                f"(got {config.max_iti_ms} < {config.min_iti_ms})"
            )
        )
    if config.max_response_ms <= 0:
        raise ConfigValidationError(
            f"max_response_ms must be > 0 (got {config.max_response_ms})"
        )
    if config.min_reaction_trials < 0:
        raise ConfigValidationError(
            f"min_reaction_trials must be >= 0 (got {config.min_reaction_trials})"
        )
    if config.seed < 0:
        raise ConfigValidationError(f"seed must be >= 0 (got {config.seed})")


def validate_nback_config(config: NBackConfig) -> None:
    if config.total_trials < 1:
        raise ConfigValidationError(
            f"total_trials must be >= 1 (got {config.total_trials})"
        )
    if config.practice_trials < 1:
        raise ConfigValidationError(
            f"practice_trials must be >= 1 (got {config.practice_trials})"
        )
    if not 0.0 <= config.target_ratio <= 1.0:
        raise ConfigValidationError(
            f"target_ratio must be within [0, 1] (got {config.target_ratio})"
        )

    for name in ("stimulus_ms", "interstimulus_interval_ms", "lead_in_ms"):
        value = getattr(config, name)
        if value < 0:
            raise ConfigValidationError(f"{name} must be >= 0 (got {value})")

    if config.response_window_ms <= 0:
        raise ConfigValidationError(
            f"response_window_ms must be > 0 (got {config.response_window_ms})"
        )
    if config.seed < 0:
        raise ConfigValidationError(f"seed must be >= 0 (got {config.seed})")
