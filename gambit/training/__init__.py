from .loop import Learner, LearnerConfig, LearnerUpdate, Trainer

__all__ = ["Learner", "LearnerConfig", "LearnerUpdate", "Trainer"]
