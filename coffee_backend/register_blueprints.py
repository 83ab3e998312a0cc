"""
Centralized Blueprint Registration
All blueprints MUST be registered inside register_all_blueprints(app)
"""

def register_all_blueprints(app):

    # Root
    from coffee_backend.routes.root.root_routes import root_bp
    app.register_blueprint(root_bp)

    # Inventory (status, alerts, thresholds, audit)
    from coffee_backend.routes.inventory.inventory_routes import inventory_bp
    app.register_blueprint(inventory_bp)

    # Batches (role-projected views)
    from coffee_backend.routes.batch.batch_routes import batch_bp
    app.register_blueprint(batch_bp)

    # Redemptions
    from coffee_backend.routes.redemption.redemption_routes import redemption_bp
    app.register_blueprint(redemption_bp)

    print("✓ All blueprints registered")
