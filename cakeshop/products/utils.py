from typing import Any, Dict, Optional
from cakeshop.schema.full_schema import Product


def cover_image(product: Optional[Product]) -> str:
    if product is None or not product.images:
        return ""
    return product.images[0]


def find_weight_option(product: Product, weight_in_kg: float) -> Optional[Dict[str, Any]]:
    for opt in product.weight_options or []:
        if float(opt.get("weight_in_kg", 0)) == float(weight_in_kg):
            return opt
    return None
