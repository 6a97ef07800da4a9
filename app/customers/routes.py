from flask import request, jsonify
from app.customers import customers
from app.customers.models import Customer
from app.auth.decorators import login_required


@customers.route('/search')
@login_required
def search():
    """Phone/name lookup used when attaching a customer to a sale."""
    q = request.args.get('q', '').strip()
    if not q:
        return jsonify([])

    results = Customer.query.filter(
        (Customer.phone.ilike(f'%{q}%')) |
        (Customer.name.ilike(f'%{q}%'))
    ).limit(10).all()

    return jsonify([c.to_dict() for c in results])
