"""Save and load alignment parameters and results as JSON."""

import json
import os
from typing import Optional, Tuple

from imagealign.core.alignment_runner import AlignmentParameters, AlignmentResult
from imagealign.utils.helpers import setup_logger

logger = setup_logger(__name__)


class ConfigManager:
    """JSON persistence for :class:`AlignmentParameters` and results.

    A session file holds both::

        {
          "alignment_params": {...},
          "alignment_result": {...}     # optional
        }
    """

    PARAMS_KEY = 'alignment_params'
    RESULT_KEY = 'alignment_result'

    @staticmethod
    def _write(filepath: str, data: dict):
        parent = os.path.dirname(os.path.abspath(filepath))
        os.makedirs(parent, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(data, f, indent=2, default=str)

    @staticmethod
    def _read(filepath: str) -> dict:
        if not os.path.isfile(filepath):
            raise FileNotFoundError(f"Config file not found: {filepath}")
        with open(filepath, 'r') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Invalid config file: {filepath}")
        return data

    @staticmethod
    def save_parameters(params: AlignmentParameters, filepath: str):
        ConfigManager._write(filepath, {ConfigManager.PARAMS_KEY: params.to_dict()})
        logger.info(f"Parameters saved to: {filepath}")

    @staticmethod
    def load_parameters(filepath: str) -> AlignmentParameters:
        """Load parameters; a bare parameter dict is accepted too."""
        data = ConfigManager._read(filepath)
        params = AlignmentParameters.from_dict(
            data.get(ConfigManager.PARAMS_KEY, data))
        logger.info(f"Parameters loaded from: {filepath}")
        return params

    @staticmethod
    def save_result(result: AlignmentResult, filepath: str,
                    params: Optional[AlignmentParameters] = None):
        data = {ConfigManager.RESULT_KEY: result.to_dict()}
        if params is not None:
            data[ConfigManager.PARAMS_KEY] = params.to_dict()
        ConfigManager._write(filepath, data)
        logger.info(f"Result saved to: {filepath}")

    @staticmethod
    def load_result(filepath: str
                    ) -> Tuple[AlignmentResult, Optional[AlignmentParameters]]:
        data = ConfigManager._read(filepath)
        if ConfigManager.RESULT_KEY not in data:
            raise ValueError(f"No alignment result in: {filepath}")
        result = AlignmentResult.from_dict(data[ConfigManager.RESULT_KEY])
        params = None
        if ConfigManager.PARAMS_KEY in data:
            params = AlignmentParameters.from_dict(data[ConfigManager.PARAMS_KEY])
        return result, params
