from cakeshop.common.logging_setup import get_logger

logger = get_logger("cakeshop.middlewares")
