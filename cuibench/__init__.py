import logging

__all__ = [
    "errors", "concepts", "embedding", "io", "evaluation", "projection", "plots",
]
__version__ = "0.1.0"

# Configure package-level logger
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cuibench")
