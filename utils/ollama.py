import subprocess
from typing import Any, Dict, Optional

from loguru import logger

from config import load_config


def call_llm(
    prompt: str,
    model: Optional[str] = None,
    timeout: Optional[int] = None,
    config: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """Call local Ollama model with prompt, return response or None on error."""
    if config is None:
        config = load_config()
    model = model or config.get('ollama', {}).get('model', 'llama3.2')
    timeout = timeout or config.get('ollama', {}).get('timeout', 60)
    cmd = ['ollama', 'run', model]
    try:
        result = subprocess.run(
            cmd,
            input=prompt,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
            encoding='utf-8'
        )
        return result.stdout.strip()
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, FileNotFoundError) as e:
        logger.warning("Ollama call failed ({}): {}", model, e)
        return None
