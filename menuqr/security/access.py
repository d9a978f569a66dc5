from menuqr.models import ACCOUNT_ACTIVE

def menu_is_servable(restaurant) -> bool:
    """
    Public menu gate. Reads only the stored access flag; billing reconciliation
    is the sole writer of restaurant.status.
    """
    return bool(restaurant is not None and restaurant.status == ACCOUNT_ACTIVE)
