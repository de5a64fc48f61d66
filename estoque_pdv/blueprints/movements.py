"""Movements blueprint - ledger listing, manual entries and reversal (Multi-Tenant)."""
from datetime import date
from typing import Any, Dict

from flask import Blueprint, request, jsonify, current_app, g

from estoque_pdv.database import get_session
from estoque_pdv.exceptions import ValidationError
from estoque_pdv.middleware import require_tenant
from estoque_pdv.services import movement_service

movements_bp = Blueprint('movements', __name__, url_prefix='/movements')


def _parse_date_arg(name: str):
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f'Data inválida em {name}: {raw}. Use AAAA-MM-DD.', field=name)


def _filters_from_args() -> Dict[str, Any]:
    product_id = request.args.get('product_id')
    if product_id:
        try:
            product_id = int(product_id)
        except ValueError:
            raise ValidationError('product_id inválido.', field='product_id')

    return {
        'date_from': _parse_date_arg('date_from'),
        'date_to': _parse_date_arg('date_to'),
        'product_id': product_id or None,
        'movement_type': request.args.get('type') or None,
        'category_id': request.args.get('category_id') or None,
        'search': request.args.get('q') or None,
    }


@movements_bp.route('', methods=['GET'])
@require_tenant
def list_movements():
    """
    List movements.

    Query params: date_from, date_to (AAAA-MM-DD), product_id, type
    (entrada|saida), category_id ('sem_categoria' for none), q, order, limit.
    """
    db_session = get_session()
    limit = request.args.get('limit', type=int)

    movements = movement_service.list_movements(
        db_session, g.tenant_id,
        order=request.args.get('order', 'date_desc'),
        limit=limit,
        **_filters_from_args()
    )
    return jsonify({'movements': [m.to_dict() for m in movements]})


@movements_bp.route('/summary', methods=['GET'])
@require_tenant
def summary():
    db_session = get_session()
    return jsonify(movement_service.summarize_movements(db_session, g.tenant_id, **_filters_from_args()))


@movements_bp.route('', methods=['POST'])
@require_tenant
def create_movement():
    """Manual entrada / saida. Body: product_id, type, quantity, note."""
    db_session = get_session()
    payload = request.get_json(silent=True) or {}

    if not payload.get('product_id'):
        raise ValidationError('Selecione um produto.', field='product_id')

    movement = movement_service.register_manual_movement(
        db_session,
        payload['product_id'],
        payload.get('type'),
        payload.get('quantity'),
        g.tenant_id,
        g.user_id,
        note=payload.get('note', '')
    )
    current_app.logger.info(f"[movements] manual {movement.type.value} #{movement.id} tenant={g.tenant_id}")
    return jsonify({'movement': movement.to_dict()}), 201


@movements_bp.route('/<int:movement_id>', methods=['DELETE'])
@require_tenant
def reverse_movement(movement_id: int):
    db_session = get_session()
    result = movement_service.reverse_movement(db_session, movement_id, g.tenant_id, g.user_id)
    return jsonify({'status': 'ok', **result})


@movements_bp.route('/reverse', methods=['POST'])
@require_tenant
def reverse_many():
    """Bulk reversal. Body: {"ids": [..]}. Each id succeeds or fails on its own."""
    db_session = get_session()
    payload = request.get_json(silent=True) or {}
    ids = payload.get('ids') or []
    if not isinstance(ids, list) or not ids:
        raise ValidationError('Informe as movimentações a excluir.', field='ids')

    results = movement_service.reverse_movements(db_session, ids, g.tenant_id, g.user_id)
    return jsonify({'results': results})
