from apps.utils.exceptions import NotFound

from .models import Address


class CustomerService:

    @staticmethod
    def resolve_delivery_address(customer, address_id=None) -> Address:
        """
        Explicit address if given, otherwise the customer's default one.
        """
        if address_id:
            address = Address.objects.filter(id=address_id, customer=customer).first()
        else:
            address = Address.objects.filter(customer=customer, is_default=True).first()

        if address is None:
            raise NotFound("Delivery address not found")
        return address
