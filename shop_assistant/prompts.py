"""Prompt assembly for the shopping assistant."""

import json
from typing import Any, Dict, List, Optional

from shop_assistant.models import ROLE_USER

STORE_NAME = "L Y Я A"

CART_INSTRUCTIONS = """Your instructions:
1. **Greet and help:** Always greet the customer warmly and ask how you can help.
2. **Product information:** Answer product questions using the list above.
   * When quoting a price, prefer the discounted price, e.g. "only Rp 15.600!".
   * Without a discount, quote "Rp [original_price]".
   * Describe stock as "available", "out of stock" or "limited stock". Never say "undefined".
   * When asked for specifics, give the full details as narrative text.
3. **Cart actions:**
   * To add a product to the cart, use this JSON format:
     ```json
     {"action": "addToCart", "productName": "Product Name", "price": Price, "quantity": Quantity, "image": "[original_image_url]", "warna": "Colour", "ukuran": "Size", "berat": Weight}
     ```
   * To remove a product from the cart:
     ```json
     {"action": "removeFromCart", "productName": "Product Name"}
     ```
   * To change the quantity of a product in the cart:
     ```json
     {"action": "updateCartQuantity", "productName": "Product Name", "quantity": NewQuantity}
     ```
   * To empty the cart:
     ```json
     {"action": "emptyCart"}
     ```
   * To show the cart (describe its contents in the narrative as well):
     ```json
     {"action": "viewCart"}
     ```
   * To send the customer to checkout, after they confirm:
     ```json
     {"action": "checkout", "redirectUrl": "/checkout"}
     ```
4. **Other questions:** For questions unrelated to the products, answer helpfully or point the customer to the help page.
   * Do not append a **json** string at the end of your reply."""


def _format_product(product: Dict[str, Any]) -> str:
    price = f"Rp {product.get('discount')}"
    original = product.get("price")
    if original and original != product.get("discount"):
        price += f" (Original price: Rp {original})"

    styles = product.get("styles") or []
    variants = ", ".join(str(style.get("name")) for style in styles) or "None"

    return "\n".join(
        [
            f"- Name: {product.get('title')}",
            f"  Price: {price}",
            f"  Stock: {product.get('stok')}",
            f"  Description: {product.get('description') or 'No description.'}",
            f"  Colour variants: {variants}",
            f"  Image: {product.get('image')}",
        ]
    )


def _format_cart(cart_items: List[Dict[str, Any]]) -> str:
    if not cart_items:
        return "Cart is empty."
    return "\n".join(
        f"- {item.get('name')} "
        f"(Qty: {item.get('quantity')}, Price: {item.get('price')})"
        for item in cart_items
    )


def build_system_prompt(
    products: List[Dict[str, Any]], cart_items: Optional[List[Dict[str, Any]]]
) -> str:
    """Describe the store, its catalog and the shopper's cart for the model."""
    product_lines = "\n\n".join(_format_product(p) for p in products)
    return (
        f'You are the AI assistant of the online store "{STORE_NAME}". '
        "You help customers with product questions, shopping, managing "
        "their cart and checking out.\n\n"
        f"Products available in our store:\n{product_lines}\n\n"
        f"Current shopping cart:\n{_format_cart(cart_items or [])}\n\n"
        f"{CART_INSTRUCTIONS}\n"
    )


def _render_history_text(entry: Dict[str, str]) -> str:
    text = entry.get("text", "")
    if entry.get("role") != ROLE_USER:
        return text
    # product detail requests are stored as JSON payloads from the storefront
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        return text
    if (
        isinstance(parsed, dict)
        and parsed.get("type") == "product_detail"
        and isinstance(parsed.get("data"), dict)
        and parsed["data"].get("title")
    ):
        return f"User asked for product details: {parsed['data']['title']}"
    return text


def build_conversation(
    history: List[Dict[str, str]],
    message: str,
    structured_input: Optional[Any] = None,
) -> List[Dict[str, str]]:
    """Convert stored history plus the new message into model turns.

    Returns a list of ``{"role": "user" | "model", "text": ...}`` entries.
    Structured input, when given, replaces the message text as the last turn.
    """
    conversation = [
        {
            "role": "user" if entry.get("role") == ROLE_USER else "model",
            "text": _render_history_text(entry),
        }
        for entry in history
    ]

    if structured_input is not None:
        latest = json.dumps(structured_input)
    else:
        latest = message
    conversation.append({"role": "user", "text": latest})
    return conversation
