from typing import Optional, Set


class BaseSignalDetector:
    """Detects preference signals in one teacher utterance.

    Implementations receive text that is already NFC-normalised and
    lower-cased by :func:`engines.feature_extractor.analyze`.
    """

    def wants_table(self, text: str) -> bool:
        raise NotImplementedError

    def wants_image(self, text: str) -> bool:
        raise NotImplementedError

    def wants_latex(self, text: str) -> bool:
        raise NotImplementedError

    def wants_list(self, text: str) -> bool:
        raise NotImplementedError

    def is_exam_related(self, text: str) -> bool:
        raise NotImplementedError

    def is_lesson_related(self, text: str) -> bool:
        raise NotImplementedError

    def wants_detail(self, text: str) -> bool:
        raise NotImplementedError

    def wants_brevity(self, text: str) -> bool:
        raise NotImplementedError

    def difficulty_tier(self, text: str) -> Optional[str]:
        raise NotImplementedError

    def topics(self, text: str) -> Set[str]:
        raise NotImplementedError
