import uvicorn

from intent_agent.application.api.health_server import create_app
from intent_agent.infrastructure.config.settings import get_settings
from intent_agent.infrastructure.observability.logging import setup_logging


def main():
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format, service_name=settings.service_name)

    app = create_app(settings)
    uvicorn.run(app, host=settings.health_host, port=settings.health_port, log_config=None)


if __name__ == "__main__":
    main()
