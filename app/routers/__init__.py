from .admin import router as admin_router
from .enrollment import router as enrollment_router
from .payment import router as payment_router
from .subscription import router as subscription_router

routes = [
    enrollment_router,
    payment_router,
    subscription_router,
    admin_router,
]
