from biggie.routes import chaos, datastores, health, kafka, metadata, metrics, network, simple, stress

ROUTERS = (
    simple.router,
    health.router,
    metadata.router,
    stress.router,
    network.router,
    chaos.router,
    datastores.router,
    kafka.router,
    metrics.router,
)
