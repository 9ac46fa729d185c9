import yaml
import logging
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CFG_PATH = Path(__file__).parent / 'data' / 'ledger_config.yaml'

_settings_cache = None


@dataclass
class Settings:
    default_price_per_ton: Decimal
    storage_dir: Path
    primary_key: str
    backup_key: str
    backup_interval_seconds: int
    transactions_sheet: str
    summary_sheet: str
    paid_fill: str
    unpaid_fill: str
    month_locale: str


def load_settings(path: Optional[Path] = None) -> Settings:
    """Load settings from YAML; the default file is read once and cached"""
    global _settings_cache

    if path is None and _settings_cache is not None:
        return _settings_cache

    cfg_path = path or CFG_PATH
    logger.debug(f"Loading ledger settings from {cfg_path}")
    cfg = yaml.safe_load(cfg_path.read_text(encoding='utf-8'))

    storage = cfg['storage']
    workbook = cfg['workbook']
    settings = Settings(
        default_price_per_ton=Decimal(str(cfg['pricing']['default_price_per_ton'])),
        storage_dir=Path(storage['directory']).expanduser(),
        primary_key=storage['primary_key'],
        backup_key=storage['backup_key'],
        backup_interval_seconds=int(storage.get('backup_interval_seconds', 300)),
        transactions_sheet=workbook['transactions_sheet'],
        summary_sheet=workbook['summary_sheet'],
        paid_fill=str(workbook['paid_fill']).upper(),
        unpaid_fill=str(workbook['unpaid_fill']).upper(),
        month_locale=cfg.get('labels', {}).get('month_locale', 'fr'),
    )

    if path is None:
        _settings_cache = settings
        logger.info(f"Loaded ledger settings (version {cfg.get('metadata', {}).get('config_version', 'unknown')})")
    return settings
