from order_service.schemas import CartLineIn


def line(product_id: int, quantity: int, price=None) -> CartLineIn:
    return CartLineIn(product_id=product_id, quantity=quantity, price=price)
