from jobqueue.api.v1.router import router as api_v1_router

__all__ = ['api_v1_router']
