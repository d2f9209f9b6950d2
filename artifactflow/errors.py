# artifactflow/errors.py


class WorkflowError(Exception):
    pass


class NotFoundError(WorkflowError):
    pass


class BadRequestError(WorkflowError):
    pass


class DependencyCycleError(BadRequestError):
    pass


class MissingRequiredDependencyError(WorkflowError):
    """
    Raised when a required dependency type has no artifact in the project.
    Carries the missing type name so callers can tell the user what to create first.
    """

    def __init__(self, dependency_type_name: str):
        self.dependency_type_name = dependency_type_name
        super().__init__(
            f"{dependency_type_name} missing; {dependency_type_name} is required context"
        )


class ForbiddenError(WorkflowError):
    pass


class GenerationError(WorkflowError):
    """The model reply could not be turned into artifact content/commentary."""
    pass
