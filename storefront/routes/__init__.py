from storefront.routes import health, stores, stripe_webhook, subscription


def register_blueprints(app):
    app.register_blueprint(health.bp)
    app.register_blueprint(stripe_webhook.bp)
    app.register_blueprint(subscription.bp)
    app.register_blueprint(stores.bp)
