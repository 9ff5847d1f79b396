from .data_checks import ReplayDataError, validate_buffer_sample, validate_experiences

__all__ = ["ReplayDataError", "validate_buffer_sample", "validate_experiences"]
