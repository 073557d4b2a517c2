# flowline/core/models/config.py
from typing import Any, Dict, Mapping, Optional
from pydantic import BaseModel, model_validator, Field, ConfigDict
from flowline.core.exception_mapper import (
    ExceptionMapper,
    validate_exception_mapper,
    validate_error_code_string,
)
from flowline.core.errors import (
    ConfigurationError,
    ErrorCode,
    ValidationReport,
    raise_collected,
)
import logging
import os


class LLMDefaults(BaseModel):
    """Call parameters merged under every LLM task's own ``model_params``."""

    model_config = ConfigDict(frozen=True)

    model: Optional[str] = None
    temperature: float = 0.7
    max_tokens: int = 1000
    # Provider-specific defaults forwarded untouched (e.g. top_p)
    extra: Dict[str, Any] = Field(default_factory=dict)

    def as_parameters(self) -> Dict[str, Any]:
        params: Dict[str, Any] = dict(self.extra)
        if self.model is not None:
            params['model'] = self.model
        params['temperature'] = self.temperature
        params['max_tokens'] = self.max_tokens
        return params


class EngineConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    # Upper bound on delegates running at once within a fan-out group. None = unlimited.
    max_parallel_branches: Optional[int] = None
    # Infer fan-out groups from independent templates. False = strictly sequential walk.
    parallel_fan_out: bool = True
    # Mark tasks the walk never reached as SKIPPED instead of leaving them PENDING.
    mark_unreached_skipped: bool = False
    llm_defaults: LLMDefaults = Field(default_factory=LLMDefaults)
    exception_mapper: ExceptionMapper = Field(
        default_factory=lambda: ExceptionMapper(),
    )
    default_unhandled_error_code: str = 'UNHANDLED_EXCEPTION'

    @model_validator(mode='after')
    def validate_engine_configuration(self):
        """Collects all independent errors and raises them together."""
        report = ValidationReport('config')

        if self.max_parallel_branches is not None and self.max_parallel_branches <= 0:
            report.add(
                ConfigurationError(
                    message='max_parallel_branches must be positive',
                    code=ErrorCode.CONFIG_INVALID_PARALLELISM,
                    notes=[f'got max_parallel_branches={self.max_parallel_branches}'],
                    help_text='use a positive integer or None for unlimited',
                )
            )

        if self.llm_defaults.temperature < 0:
            report.add(
                ConfigurationError(
                    message='llm_defaults.temperature must be non-negative',
                    code=ErrorCode.CONFIG_INVALID_LLM_DEFAULTS,
                    notes=[f'got temperature={self.llm_defaults.temperature}'],
                )
            )
        if self.llm_defaults.max_tokens <= 0:
            report.add(
                ConfigurationError(
                    message='llm_defaults.max_tokens must be positive',
                    code=ErrorCode.CONFIG_INVALID_LLM_DEFAULTS,
                    notes=[f'got max_tokens={self.llm_defaults.max_tokens}'],
                )
            )

        # Validate exception_mapper entries
        mapper_errors = validate_exception_mapper(
            self.exception_mapper,
        )
        for msg in mapper_errors:
            report.add(
                ConfigurationError(
                    message=msg,
                    code=ErrorCode.CONFIG_INVALID_EXCEPTION_MAPPER,
                    notes=['check exception_mapper keys and values'],
                    help_text='keys must be BaseException subclasses, values must be UPPER_SNAKE_CASE error codes',
                )
            )

        default_code_error = validate_error_code_string(
            self.default_unhandled_error_code,
            field_name='default_unhandled_error_code',
        )
        if default_code_error is not None:
            report.add(
                ConfigurationError(
                    message=default_code_error,
                    code=ErrorCode.CONFIG_INVALID_EXCEPTION_MAPPER,
                    notes=['invalid default_unhandled_error_code in EngineConfig'],
                    help_text='use UPPER_SNAKE_CASE error codes',
                )
            )

        raise_collected(report)
        return self

    @classmethod
    def from_env(
        cls,
        prefix: str = 'FLOWLINE_',
        environ: Optional[Mapping[str, str]] = None,
        **overrides: Any,
    ) -> 'EngineConfig':
        """
        Build a config from environment variables.

        Recognised names (with the default prefix):
            FLOWLINE_MAX_PARALLEL_BRANCHES  (integer, or 'none' for unlimited)
            FLOWLINE_PARALLEL_FAN_OUT       (true/false)
            FLOWLINE_MARK_UNREACHED_SKIPPED (true/false)
            FLOWLINE_LLM_MODEL
            FLOWLINE_LLM_TEMPERATURE
            FLOWLINE_LLM_MAX_TOKENS
            FLOWLINE_DEFAULT_UNHANDLED_ERROR_CODE

        Keyword overrides win over the environment.
        """
        env = os.environ if environ is None else environ

        def read(name: str) -> Optional[str]:
            value = env.get(f'{prefix}{name}')
            return value.strip() if value is not None and value.strip() else None

        values: Dict[str, Any] = {}
        report = ValidationReport('config')

        raw = read('MAX_PARALLEL_BRANCHES')
        if raw is not None:
            if raw.lower() == 'none':
                values['max_parallel_branches'] = None
            else:
                parsed = _parse_int(raw, f'{prefix}MAX_PARALLEL_BRANCHES', report)
                if parsed is not None:
                    values['max_parallel_branches'] = parsed

        for name, field_name in (
            ('PARALLEL_FAN_OUT', 'parallel_fan_out'),
            ('MARK_UNREACHED_SKIPPED', 'mark_unreached_skipped'),
        ):
            raw = read(name)
            if raw is not None:
                parsed_flag = _parse_bool(raw, f'{prefix}{name}', report)
                if parsed_flag is not None:
                    values[field_name] = parsed_flag

        llm: Dict[str, Any] = {}
        raw = read('LLM_MODEL')
        if raw is not None:
            llm['model'] = raw
        raw = read('LLM_TEMPERATURE')
        if raw is not None:
            try:
                llm['temperature'] = float(raw)
            except ValueError:
                report.add(_env_error(f'{prefix}LLM_TEMPERATURE', raw, 'a number'))
        raw = read('LLM_MAX_TOKENS')
        if raw is not None:
            parsed = _parse_int(raw, f'{prefix}LLM_MAX_TOKENS', report)
            if parsed is not None:
                llm['max_tokens'] = parsed
        if llm:
            values['llm_defaults'] = LLMDefaults(**llm)

        raw = read('DEFAULT_UNHANDLED_ERROR_CODE')
        if raw is not None:
            values['default_unhandled_error_code'] = raw

        raise_collected(report)
        values.update(overrides)
        return cls(**values)

    def log_config(self, logger: Optional[logging.Logger] = None) -> None:
        """
        Log the EngineConfig in a human-readable format.

        Args:
            logger: Logger instance to use. If None, uses root logger.
        """
        if logger is None:
            logger = logging.getLogger()

        formatted = self._format_for_logging()
        logger.info('EngineConfig:\n%s', formatted)

    def _format_for_logging(self) -> str:
        """Internal helper to format the EngineConfig for human-readable logging."""
        lines: list[str] = []

        cap = self.max_parallel_branches
        lines.append(f'  max_parallel_branches: {"unlimited" if cap is None else cap}')
        lines.append(f'  parallel_fan_out: {self.parallel_fan_out}')
        lines.append(f'  mark_unreached_skipped: {self.mark_unreached_skipped}')

        lines.append('  llm_defaults:')
        for key, value in self.llm_defaults.as_parameters().items():
            lines.append(f'    {key}: {value}')

        if self.exception_mapper:
            lines.append('  exception_mapper:')
            for exc_type, code in self.exception_mapper.items():
                lines.append(f'    {exc_type.__name__}: {code}')
        lines.append(f'  default_unhandled_error_code: {self.default_unhandled_error_code}')

        return '\n'.join(lines)


def _env_error(name: str, raw: str, expected: str) -> ConfigurationError:
    return ConfigurationError(
        message=f'{name} must be {expected}',
        code=ErrorCode.CONFIG_INVALID_PARALLELISM
        if name.endswith('MAX_PARALLEL_BRANCHES')
        else ErrorCode.CONFIG_INVALID_LLM_DEFAULTS,
        notes=[f'got {name}={raw!r}'],
    )


def _parse_int(raw: str, name: str, report: ValidationReport) -> Optional[int]:
    try:
        return int(raw)
    except ValueError:
        report.add(_env_error(name, raw, 'an integer'))
        return None


def _parse_bool(raw: str, name: str, report: ValidationReport) -> Optional[bool]:
    lowered = raw.lower()
    if lowered in ('1', 'true', 'yes', 'on'):
        return True
    if lowered in ('0', 'false', 'no', 'off'):
        return False
    report.add(
        ConfigurationError(
            message=f'{name} must be a boolean',
            notes=[f'got {name}={raw!r}'],
            help_text='use true/false, yes/no, on/off or 1/0',
        )
    )
    return None
