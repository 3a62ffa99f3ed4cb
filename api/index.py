from mangum import Mangum

from ledger.api import app, settings
from ledger.logging import configure_logging

configure_logging(
    service_name=settings.service_name,
    environment=settings.environment,
    version=settings.version,
    level=settings.log_level,
    json_output=True,
)

handler = Mangum(app)
