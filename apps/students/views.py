# students/views.py

"""
Promotion JSON Endpoints
"""

import logging

from core.utils import run_with_retry
from students.services import PromotionService
from students.utils import serialize_promotion, serialize_transfer
from utils.utils import json_success, ledger_api, parse_json_body

logger = logging.getLogger(__name__)


@ledger_api(["POST"])
def promote_student(request, student_id):
    data = parse_json_body(request)
    result = run_with_retry(
        PromotionService.promote,
        student_id,
        data.get('to_class'),
        data.get('to_session_id'),
        remarks=data.get('remarks', ''),
    )
    payload = serialize_promotion(result.promotion, transfer=result.transfer, details=result.details)
    payload['total_balance_transferred'] = result.total_balance_transferred
    return json_success(payload, message="Student promoted successfully", status=201)


@ledger_api(["GET"])
def promotion_history(request, student_id):
    history = PromotionService.get_promotion_history(student_id)
    return json_success([serialize_promotion(promotion) for promotion in history])


@ledger_api(["GET"])
def transfer_detail(request, transfer_id):
    transfer = PromotionService.get_transfer_details(transfer_id)
    return json_success(serialize_transfer(transfer))
