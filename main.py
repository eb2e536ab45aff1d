# main.py
import sys
import asyncio
import logging
import argparse
from pathlib import Path
from logging.handlers import RotatingFileHandler

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = 'INFO', log_dir: Path = None, max_bytes: int = 5 * 1024 * 1024,
                  backup_count: int = 5):
    """Настраивает логирование: консоль + файл с ротацией (если задан log_dir)"""
    handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handlers.append(console_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)

        # Ротирующий обработчик: по умолчанию макс 5MB, 5 резервных копий
        file_handler = RotatingFileHandler(
            log_dir / "linkrelay.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='linkrelay',
        description="Link-rewriting reverse proxy. Usage: http://<host>:<port>/<target_url>",
    )
    parser.add_argument('--config', type=Path, default=None,
                        help='Path to config.json (default: app data directory)')
    parser.add_argument('--host', default=None, help='Host to bind (overrides config)')
    parser.add_argument('--port', type=int, default=None, help='Port to listen on (overrides config)')
    parser.add_argument('--log-level', default=None,
                        help='Logging level: DEBUG, INFO, WARNING, ERROR (overrides config)')
    return parser.parse_args(argv)


def main(argv=None):
    """Основная функция приложения"""
    args = parse_args(argv)

    from core.config_manager import get_app_data_dir, get_config
    config = get_config(args.config)

    # Логирование настраиваем ДО запуска сервера
    log_config = config.get_logging_config()
    setup_logging(
        level=args.log_level or log_config.get('level', 'INFO'),
        log_dir=get_app_data_dir() / 'logs' if log_config.get('file_enabled', True) else None,
        max_bytes=log_config.get('max_bytes', 5 * 1024 * 1024),
        backup_count=log_config.get('backup_count', 5),
    )

    logger.info("🚀 Starting LinkRelay")

    from core.relay_manager import RelayManager
    relay_manager = RelayManager(config)

    try:
        started = asyncio.run(relay_manager.serve_forever(args.host, args.port))
    except KeyboardInterrupt:
        logger.info("🛑 Interrupted")
        return 0

    if not started:
        logger.error(f"❌ Relay did not start: {relay_manager.last_error_details}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
