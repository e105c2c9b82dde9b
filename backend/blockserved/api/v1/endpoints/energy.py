"""
Energy.Store rental proxy

Requests are re-signed server-side so the API key never reaches the browser.
"""
from fastapi import APIRouter, Depends

from blockserved.api.v1.deps import get_energy_client
from blockserved.db.schemas import EnergyAddressCheck, EnergyOrderCheck, EnergyOrderCreate
from blockserved.services.energy_service import EnergyStoreClient
from blockserved.utils.validators import validate_tron_address

router = APIRouter()


@router.post("/createOrder")
def create_order(
    body: EnergyOrderCreate,
    energy: EnergyStoreClient = Depends(get_energy_client),
):
    receiver = validate_tron_address(body.receiver, "receiver")
    return energy.create_order(body.quantity, receiver, body.period)


@router.post("/checkOrder")
def check_order(
    body: EnergyOrderCheck,
    energy: EnergyStoreClient = Depends(get_energy_client),
):
    return energy.check_order(body.order_id)


@router.post("/checkAddress")
def check_address(
    body: EnergyAddressCheck,
    energy: EnergyStoreClient = Depends(get_energy_client),
):
    return energy.check_address(validate_tron_address(body.address, "address"))
