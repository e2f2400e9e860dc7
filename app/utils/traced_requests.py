import logging
from typing import Optional, Dict
from contextlib import contextmanager

from opentelemetry.trace import Tracer

from app.utils import mask_token, redact_credential

logger = logging.getLogger("uvicorn.error")


@contextmanager
def traced_request(
    tracer: Tracer,
    operation: str,
    start_message: str,
    credential: Optional[str] = None,
    extra_attrs: Optional[Dict] = None,
):
    """
    Open a span for one upstream call and log its start.

    ``credential`` may appear verbatim in ``start_message``; it is redacted
    there and recorded on the span only in redacted form.
    """
    with tracer.start_as_current_span(operation) as span:
        if credential:
            span.set_attribute("proxy.credential", redact_credential(credential))
        if extra_attrs:
            for k, v in extra_attrs.items():
                span.set_attribute(k, v)
        logger.info(mask_token(start_message, credential))
        yield span
