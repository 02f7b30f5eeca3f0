# Infrastructure Layer
from .uow import (
    UnitOfWork,
    ProjectRepository,
    MoratoriumRepository,
)
