from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from expr_compiler import (
	LOAD_CONST,
	LOAD_VAR,
	Instruction,
	IRProgram,
)

logger = logging.getLogger(__name__)


class RuntimeIssue(Exception):
	def __init__(self, message: str, register: Optional[str] = None) -> None:
		super().__init__(message)
		self.message = message
		self.register = register

	def __str__(self) -> str:
		return self.message


@dataclass
class RunArtifacts:
	value: Optional[float]
	steps: int
	runtime_error: Optional[RuntimeIssue] = None


class IRInterpreter:
	"""
	Executes the register IR produced by `expr_compiler.CodeGenerator`.

	Variable loads (`%x1 = %name`) read from the bindings given at
	construction time; every other register must be defined before use.
	"""

	def __init__(self, variables: Optional[Mapping[str, float]] = None) -> None:
		self._variables: Dict[str, float] = dict(variables or {})
		self._registers: Dict[str, float] = {}
		self._steps = 0

	def run(self, program: IRProgram) -> RunArtifacts:
		self._registers = {}
		self._steps = 0
		try:
			for instr in program.instructions:
				self._execute(instr)
			return RunArtifacts(value=self._read(program.result), steps=self._steps)
		except RuntimeIssue as issue:
			logger.debug("IR run failed after %d steps: %s", self._steps, issue)
			return RunArtifacts(value=None, steps=self._steps, runtime_error=issue)

	def _execute(self, instr: Instruction) -> None:
		self._steps += 1
		if instr.dest in self._registers:
			raise RuntimeIssue(f"Register {instr.dest} assigned twice.", instr.dest)
		if instr.opcode == LOAD_CONST:
			value = float(instr.operands[0])
		elif instr.opcode == LOAD_VAR:
			name = instr.operands[0][1:]
			if name not in self._variables:
				raise RuntimeIssue(f"Variable '{name}' is not bound.", instr.dest)
			value = float(self._variables[name])
		else:
			left, right = (self._read(r) for r in instr.operands)
			value = self._arith(instr, left, right)
		self._registers[instr.dest] = value

	def _arith(self, instr: Instruction, left: float, right: float) -> float:
		if instr.opcode == "add":
			return left + right
		if instr.opcode == "sub":
			return left - right
		if instr.opcode == "mul":
			return left * right
		if instr.opcode == "div":
			if right == 0:
				raise RuntimeIssue(f"Division by zero in {instr.dest}.", instr.dest)
			return left / right
		raise RuntimeIssue(f"Unknown opcode '{instr.opcode}'.", instr.dest)

	def _read(self, register: str) -> float:
		if register not in self._registers:
			raise RuntimeIssue(f"Register {register} used before definition.", register)
		return self._registers[register]
