import sys

import uvicorn
from dotenv import load_dotenv
from loguru import logger

from llm_chat_backend.api import create_app
from llm_chat_backend.app_config import load_json_config, parse_app_config, resolve_runtime_env
from llm_chat_backend.bootstrap import bootstrap_runtime, resolve_provider_name
from llm_chat_backend.errors import ConfigError


def main() -> None:
    load_dotenv()

    try:
        app_config = parse_app_config(load_json_config())
        env = resolve_runtime_env(app_config.provider_name)
        runtime = bootstrap_runtime(app_config, env)
    except ConfigError as ex:
        logger.error(f"Invalid configuration: {ex}")
        sys.exit(1)

    for description in runtime.log_descriptions:
        logger.info(f"Logging to {description}")
    logger.info(
        f"Provider: {resolve_provider_name(app_config, env)} | Model: {app_config.model} | "
        f"Context budget: {app_config.target_context_tokens:,}/{app_config.max_context_tokens:,} tokens | "
        f"Store: {app_config.db_path}"
    )
    logger.info(f"Serving chat API on http://{app_config.host}:{app_config.port}")

    uvicorn.run(
        create_app(runtime),
        host=app_config.host,
        port=app_config.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
