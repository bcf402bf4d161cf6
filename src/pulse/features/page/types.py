from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class FormInput:
    name: str
    value: str
    type: str = "text"


@dataclass
class Form:
    """
    A document form: ordered inputs (repeat names allowed) plus attributes.
    """

    inputs: list[FormInput] = field(default_factory=list)
    attributes: dict[str, str] = field(default_factory=dict)
    action: str = ""

    @classmethod
    def from_fields(cls, fields: dict[str, object], *, form_type: str | None = None, action: str = "") -> Form:
        inputs: list[FormInput] = []
        for name, value in fields.items():
            values = value if isinstance(value, list | tuple) else [value]
            inputs.extend(FormInput(name=name, value=str(v)) for v in values)
        attrs = {"data-form-type": form_type} if form_type else {}
        return cls(inputs=inputs, attributes=attrs, action=action)

    def entries(self) -> list[tuple[str, str]]:
        return [(i.name, i.value) for i in self.inputs]

    def get_attribute(self, name: str) -> str | None:
        return self.attributes.get(name)

    def find_input(self, name: str) -> FormInput | None:
        return next((i for i in self.inputs if i.name == name), None)

    def ensure_hidden(self, name: str, value: str) -> None:
        el = self.find_input(name)
        if el is None:
            el = FormInput(name=name, value=value, type="hidden")
            self.inputs.append(el)
        el.value = value


@dataclass
class SubmitEvent:
    form: Form
    default_prevented: bool = False

    def prevent_default(self) -> None:
        self.default_prevented = True
